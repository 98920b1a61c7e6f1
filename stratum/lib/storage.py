from __future__ import annotations

import logging
import os
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Protocol

from ..errors import FilesystemError, StratumError
from .command import run_cmd

logger = logging.getLogger(__name__)

# Every btrfs subvolume root has this inode number.
BTRFS_SUBVOL_INODE = 256


class SnapshotFilesystem(Protocol):
    """Copy-on-write operations needed to materialize a deployment."""

    def receive(self, stream: Path, parent: Path, name: str) -> Path:
        """Apply a snapshot stream under ``parent``; returns ``parent/name``."""
        ...

    def set_read_only(self, path: Path, read_only: bool) -> None:
        ...

    def is_subvolume(self, path: Path) -> bool:
        ...

    def list_subvolumes(self, path: Path) -> List[Path]:
        """Subvolumes at or below ``path``, deepest first."""
        ...

    def delete(self, path: Path) -> None:
        """Remove ``path`` and every nested subvolume, unsealing as needed."""
        ...


@contextmanager
def unsealed(fs: SnapshotFilesystem, path: Path) -> Iterator[None]:
    """Make ``path`` writable for the body, then seal it again.

    When the body fails, a failure to reseal is logged and the body's error
    is the one that propagates.
    """

    fs.set_read_only(path, False)
    try:
        yield
    except Exception:
        try:
            fs.set_read_only(path, True)
        except StratumError as e:
            logger.error("Unable to reseal %s: %s", path, e)
        raise
    fs.set_read_only(path, True)


def _walk_subvolumes(path: Path, is_subvolume) -> List[Path]:
    found: List[Path] = []
    if not path.exists():
        return found
    for dirpath, dirnames, _ in os.walk(path):
        p = Path(dirpath)
        if is_subvolume(p):
            found.append(p)
    # Deepest first so nested subvolumes go before their parents.
    found.sort(key=lambda p: len(p.parts), reverse=True)
    return found


class BtrfsFilesystem:
    def receive(self, stream: Path, parent: Path, name: str) -> Path:
        parent = Path(parent)
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Unable to create {parent}: {e}") from e
        run_cmd(["btrfs", "receive", "-f", str(stream), str(parent)])
        received = parent / name
        if not self.is_subvolume(received):
            raise FilesystemError(
                f"Snapshot stream {stream.name} did not produce subvolume {name}",
                context={"parent": str(parent)},
            )
        return received

    def set_read_only(self, path: Path, read_only: bool) -> None:
        run_cmd(["btrfs", "property", "set", "-ts", str(path), "ro", "true" if read_only else "false"])

    def is_subvolume(self, path: Path) -> bool:
        try:
            return Path(path).is_dir() and os.stat(path).st_ino == BTRFS_SUBVOL_INODE
        except OSError:
            return False

    def list_subvolumes(self, path: Path) -> List[Path]:
        return _walk_subvolumes(Path(path), self.is_subvolume)

    def delete(self, path: Path) -> None:
        path = Path(path)
        if not path.exists():
            return
        subvols = self.list_subvolumes(path)
        for sv in subvols:
            self.set_read_only(sv, False)
        for sv in subvols:
            run_cmd(["btrfs", "subvolume", "delete", str(sv)])
        if path.exists():
            try:
                shutil.rmtree(path)
            except OSError as e:
                raise FilesystemError(f"Unable to remove {path}: {e}") from e
        logger.info("Deleted %s (%d subvolumes)", path, len(subvols))
