from __future__ import annotations

import logging

from ..deployment import DeploymentState, MaterializeCtx
from ..errors import StratumError

logger = logging.getLogger(__name__)


class EnsureSharedVarStep:
    step_id = "30_ensure_var"
    reaches = DeploymentState.VAR_ENSURED

    def run(self, ctx: MaterializeCtx) -> None:
        shared = ctx.shared_var
        if ctx.fs.is_subvolume(shared):
            logger.info("Shared var present at %s; skipping var layer", shared)
            return

        layer = ctx.unpacker.extract_layer(ctx.bundle_path, "var")
        try:
            ctx.fs.receive(layer, shared.parent, shared.name)
            ctx.fs.set_read_only(shared, False)
        except StratumError:
            # Never leave a half-received var behind: the next deploy would adopt it.
            if shared.exists():
                try:
                    ctx.fs.delete(shared)
                except StratumError:
                    logger.exception("Unable to remove partial shared var %s", shared)
            raise
        layer.unlink()
        logger.info("Shared var created at %s", shared)
