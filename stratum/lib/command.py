from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Sequence, Type

from ..errors import FilesystemError, StratumError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


def _fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(argv: Sequence[str], *, error_cls: Type[StratumError] = FilesystemError) -> CmdResult:
    """Run a command with consistent logging.

    - Always logs the command; output goes to the log at DEBUG.
    - A non-zero exit or a missing binary raises ``error_cls``.
    """

    argv_list = list(argv)
    logger.info("CMD %s", _fmt_argv(argv_list))

    try:
        p = subprocess.run(argv_list, text=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as e:
        raise error_cls(
            f"Unable to execute {argv_list[0]}: {e}",
            context={"command": _fmt_argv(argv_list)},
        ) from e

    if p.stdout:
        logger.debug("STDOUT %s", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    if p.returncode != 0:
        raise error_cls(
            f"Command failed ({p.returncode}): {_fmt_argv(argv_list)}",
            context={"stderr": p.stderr.strip()},
        )

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)
