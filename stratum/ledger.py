from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List

from .errors import FilesystemError

logger = logging.getLogger(__name__)


class Ledger:
    """Installed deployment ids, most recent first, one per line.

    Every mutation is a read-modify-write of the whole file, replaced
    atomically.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> List[str]:
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise FilesystemError(f"Unable to read ledger {self.path}: {e}") from e
        ids: List[str] = []
        for line in text.splitlines():
            ident = line.strip()
            if ident and ident not in ids:
                ids.append(ident)
        return ids

    def save(self, ids: List[str]) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text("".join(f"{i}\n" for i in ids), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise FilesystemError(f"Unable to write ledger {self.path}: {e}") from e

    def head(self) -> str | None:
        ids = self.load()
        return ids[0] if ids else None

    def contains(self, deployment_id: str) -> bool:
        return deployment_id in self.load()

    def prepend(self, deployment_id: str) -> List[str]:
        ids = [deployment_id] + [i for i in self.load() if i != deployment_id]
        self.save(ids)
        logger.info("Ledger head is now %s", deployment_id)
        return ids

    def remove(self, deployment_id: str) -> List[str]:
        ids = [i for i in self.load() if i != deployment_id]
        self.save(ids)
        logger.info("Removed %s from ledger", deployment_id)
        return ids
