from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .lib.env import PATHS

DEFAULT_LOG_PATH = PATHS.log_default

_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_CONSOLE_FORMAT = "%(levelname)s: %(message)s"


def _open_file_handler(log_path: str) -> tuple[logging.Handler, str]:
    try:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path), log_path
    except OSError:
        # Unprivileged runs (list, get-available) cannot write /var/log.
        fallback = str(Path.cwd() / "stratum.log")
        return logging.FileHandler(fallback), fallback


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
    console_level: Optional[int] = None,
) -> str:
    """Configure root logging once per process.

    The file log always receives ``level``; the console only shows warnings
    unless ``console_level`` is given, so command output stays readable.

    Returns the actual file path being used.
    """

    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, "_stratum_configured", False):
        return getattr(root, "_stratum_log_path", log_path)

    file_handler, chosen_path = _open_file_handler(log_path)
    file_handler.setFormatter(logging.Formatter(fmt=_FILE_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
    file_handler.setLevel(level)
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(fmt=_CONSOLE_FORMAT))
        console.setLevel(console_level if console_level is not None else logging.WARNING)
        root.addHandler(console)

    setattr(root, "_stratum_configured", True)
    setattr(root, "_stratum_log_path", chosen_path)

    logging.getLogger(__name__).info("Logging initialized (requested=%s, actual=%s)", log_path, chosen_path)
    return chosen_path
