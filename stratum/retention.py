from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .config import StratumConfig
from .deployment import deployment_dir
from .errors import FilesystemError, StratumError
from .ledger import Ledger
from .lib.bootloader import BootRegistrar
from .lib.storage import SnapshotFilesystem
from .pipeline import remove_boot_artifacts, remove_deployment_tree

logger = logging.getLogger(__name__)


def removal_set(ids: Sequence[str], keep: int) -> List[str]:
    """Entries beyond the ``keep`` most recent, by exact id."""

    if keep < 1:
        raise ValueError("keep must be >= 1")
    retained = set(ids[:keep])
    return [i for i in ids if i not in retained]


@dataclass
class CollectResult:
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    repaired: List[str] = field(default_factory=list)


class RetentionCollector:
    def __init__(
        self,
        cfg: StratumConfig,
        ledger: Ledger,
        fs: SnapshotFilesystem,
        registrar: BootRegistrar,
    ) -> None:
        self.cfg = cfg
        self.ledger = ledger
        self.fs = fs
        self.registrar = registrar

    def remove(self, deployment_id: str) -> None:
        """Remove one deployment; filesystem state first, ledger line last."""

        self.registrar.unregister(deployment_id)
        remove_deployment_tree(self.fs, self.cfg, deployment_id)
        remove_boot_artifacts(self.cfg, deployment_id)
        self.ledger.remove(deployment_id)
        logger.info("Collected deployment %s", deployment_id)

    def repair(self) -> List[str]:
        """Finish removals interrupted after the tree was deleted."""

        repaired: List[str] = []
        for deployment_id in self.ledger.load():
            if deployment_dir(self.cfg, deployment_id).exists():
                continue
            logger.warning("Ledger entry %s has no deployment on disk; finishing removal", deployment_id)
            self.remove(deployment_id)
            repaired.append(deployment_id)
        return repaired

    def orphans(self, protect: Optional[str] = None) -> List[str]:
        """Deployment directories that the ledger does not reference."""

        root = self.cfg.deployments_dir
        if not root.is_dir():
            return []
        known = set(self.ledger.load())
        return sorted(
            p.name for p in root.iterdir() if p.is_dir() and p.name not in known and p.name != protect
        )

    def collect(self, *, sweep_orphans: bool = False, protect: Optional[str] = None) -> CollectResult:
        result = CollectResult()
        result.repaired = self.repair()

        candidates = removal_set(self.ledger.load(), self.cfg.deploy_keep)
        if sweep_orphans:
            candidates += self.orphans(protect=protect)

        for deployment_id in candidates:
            try:
                self.remove(deployment_id)
                result.removed.append(deployment_id)
            except (StratumError, OSError) as e:
                logger.error("Unable to collect %s: %s", deployment_id, e)
                result.failed.append(deployment_id)

        if result.failed:
            raise FilesystemError(
                f"Retention left {len(result.failed)} deployment(s) partially removed",
                hint="Re-run to finish the removal.",
                context={"failed": ", ".join(result.failed)},
            )
        return result
