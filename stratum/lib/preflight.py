from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, List

from ..errors import PreconditionError

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("btrfs", "bootctl", "dracut")


def require_root() -> None:
    if os.geteuid() != 0:
        raise PreconditionError("This operation must be run as root")


def require_tools(tools: Iterable[str] = REQUIRED_TOOLS) -> None:
    missing: List[str] = [t for t in tools if shutil.which(t) is None]
    if missing:
        raise PreconditionError(
            f"Required tools not found: {', '.join(missing)}",
            hint="Install btrfs-progs, systemd-boot (bootctl) and dracut.",
        )


def require_initialized(config_path: str) -> None:
    if not Path(config_path).exists():
        raise PreconditionError(
            f"Not initialized: {config_path} is missing",
            hint="Run `stratum init` first.",
        )


def require_uninitialized(config_path: str) -> None:
    if Path(config_path).exists():
        raise PreconditionError(f"Already initialized: {config_path} exists")
