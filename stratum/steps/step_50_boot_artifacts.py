from __future__ import annotations

import logging

from ..deployment import DeploymentState, MaterializeCtx
from ..lib.initramfs import install_boot_artifacts

logger = logging.getLogger(__name__)


class InstallBootArtifactsStep:
    step_id = "50_boot_artifacts"
    reaches = DeploymentState.COMPLETE

    def run(self, ctx: MaterializeCtx) -> None:
        kernel = install_boot_artifacts(
            root=ctx.rootfs,
            dest_dir=ctx.boot_artifacts,
            builder=ctx.initramfs,
        )
        logger.info("Deployment %s boots kernel %s", ctx.deployment_id, kernel.version)
