from __future__ import annotations

import logging

from ..deployment import DeploymentState, MaterializeCtx
from ..errors import FilesystemError

logger = logging.getLogger(__name__)


class ReceiveRootStep:
    step_id = "10_receive_root"
    reaches = DeploymentState.ROOT_WRITTEN

    def run(self, ctx: MaterializeCtx) -> None:
        if ctx.rootfs.exists():
            raise FilesystemError(f"Deployment root already exists: {ctx.rootfs}")

        layer = ctx.unpacker.extract_layer(ctx.bundle_path, "root")
        try:
            ctx.deployment_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Unable to create {ctx.deployment_dir}: {e}") from e

        # Received subvolumes start out read-only.
        ctx.fs.receive(layer, ctx.deployment_dir, "rootfs")
        layer.unlink()
        logger.info("Root layer received at %s", ctx.rootfs)
