from __future__ import annotations

import logging

from ..deployment import DeploymentState, MaterializeCtx
from ..errors import FilesystemError
from ..lib.storage import unsealed

logger = logging.getLogger(__name__)

MOUNT_POINTS = ("var", "root")


class ReceiveEtcStep:
    step_id = "20_receive_etc"
    reaches = DeploymentState.ETC_WRITTEN

    def run(self, ctx: MaterializeCtx) -> None:
        layer = ctx.unpacker.extract_layer(ctx.bundle_path, "etc")
        rootfs = ctx.rootfs
        etc = rootfs / "etc"

        with unsealed(ctx.fs, rootfs):
            try:
                # Root images may ship an empty /etc placeholder; the etc layer replaces it.
                if etc.is_dir() and not ctx.fs.is_subvolume(etc) and not any(etc.iterdir()):
                    etc.rmdir()
                ctx.fs.receive(layer, rootfs, "etc")
                for name in MOUNT_POINTS:
                    (rootfs / name).mkdir(exist_ok=True)
            except OSError as e:
                raise FilesystemError(f"Unable to prepare {rootfs}: {e}") from e

        # Local configuration stays editable after install.
        ctx.fs.set_read_only(etc, False)
        layer.unlink()
        logger.info("Etc layer received into %s", rootfs)
