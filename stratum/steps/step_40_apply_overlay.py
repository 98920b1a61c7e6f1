from __future__ import annotations

import logging

from ..deployment import DeploymentState, MaterializeCtx
from ..lib.assets import copy_tree, top_level_entries
from ..lib.storage import unsealed

logger = logging.getLogger(__name__)


class ApplyOverlayStep:
    step_id = "40_apply_overlay"
    reaches = DeploymentState.OVERLAY_APPLIED

    def run(self, ctx: MaterializeCtx) -> None:
        if not ctx.cfg.enable_overlay:
            return
        overlay = ctx.cfg.overlay_dir
        if not overlay.is_dir():
            logger.warning("Overlay enabled but %s does not exist", overlay)
            return

        entries = top_level_entries(overlay)
        if "etc" in entries:
            n = copy_tree(overlay, ctx.rootfs, only_top=("etc",))
            logger.info("Overlay: %d files copied into etc", n)

        if any(name != "etc" for name in entries):
            with unsealed(ctx.fs, ctx.rootfs):
                n = copy_tree(overlay, ctx.rootfs, skip_top=("etc",))
            logger.info("Overlay: %d files copied into sealed root", n)
