from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from ..errors import FilesystemError
from .command import run_cmd

logger = logging.getLogger(__name__)


class InitramfsBuilder(Protocol):
    def generate(self, root: Path, kernel_version: str, output: Path) -> None:
        ...


class DracutInitramfsBuilder:
    """Builds the initramfs from the deployment's own modules and dracut config."""

    def generate(self, root: Path, kernel_version: str, output: Path) -> None:
        run_cmd(
            [
                "dracut",
                "--force",
                "--no-hostonly",
                "--sysroot",
                str(root),
                "--kver",
                kernel_version,
                str(output),
            ],
        )


@dataclass(frozen=True)
class KernelImage:
    version: str
    path: Path


def find_kernel(root: Path) -> Optional[KernelImage]:
    """Locate the kernel shipped inside a deployment root.

    Prefers ``usr/lib/modules/<kver>/vmlinuz``, then ``boot/vmlinuz-<kver>``.
    With several versions present the highest sorting one wins.
    """

    modules = root / "usr/lib/modules"
    if modules.is_dir():
        candidates = sorted(p for p in modules.iterdir() if (p / "vmlinuz").is_file())
        if candidates:
            return KernelImage(version=candidates[-1].name, path=candidates[-1] / "vmlinuz")

    boot = root / "boot"
    if boot.is_dir():
        kernels = sorted(boot.glob("vmlinuz-*"))
        if kernels:
            return KernelImage(version=kernels[-1].name[len("vmlinuz-") :], path=kernels[-1])

    return None


def install_boot_artifacts(
    *,
    root: Path,
    dest_dir: Path,
    builder: InitramfsBuilder,
) -> KernelImage:
    """Copy the kernel out of ``root`` and generate its initramfs in ``dest_dir``."""

    kernel = find_kernel(root)
    if kernel is None:
        raise FilesystemError(f"No kernel found in {root}")

    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(kernel.path, dest_dir / "vmlinuz")
    except OSError as e:
        raise FilesystemError(f"Unable to copy kernel to {dest_dir}: {e}") from e

    builder.generate(root, kernel.version, dest_dir / "initramfs.img")
    logger.info("Boot artifacts for kernel %s written to %s", kernel.version, dest_dir)
    return kernel
