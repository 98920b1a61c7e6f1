from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import List

from ..errors import FilesystemError

logger = logging.getLogger(__name__)


def copy_tree(src: Path, dst: Path, *, skip_top: tuple[str, ...] = (), only_top: tuple[str, ...] = ()) -> int:
    """Merge ``src`` into ``dst``, preserving metadata and symlinks.

    ``only_top``/``skip_top`` filter on the first path component so a caller can
    copy part of a tree while the rest of ``dst`` stays sealed.
    """

    if not src.is_dir():
        raise FileNotFoundError(str(src))

    copied = 0
    try:
        for item in sorted(src.rglob("*")):
            rel = item.relative_to(src)
            top = rel.parts[0]
            if only_top and top not in only_top:
                continue
            if top in skip_top:
                continue
            out = dst / rel
            if item.is_dir() and not item.is_symlink():
                out.mkdir(parents=True, exist_ok=True)
                continue
            out.parent.mkdir(parents=True, exist_ok=True)
            if out.is_symlink() or out.exists():
                out.unlink()
            shutil.copy2(item, out, follow_symlinks=False)
            copied += 1
    except OSError as e:
        raise FilesystemError(f"Overlay copy {src} -> {dst} failed: {e}") from e
    return copied


def top_level_entries(src: Path) -> List[str]:
    return sorted(p.name for p in src.iterdir())
