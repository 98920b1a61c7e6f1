from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import StratumConfig, write_default_config
from .deployment import DeploymentState, MaterializeCtx, deployment_dir
from .errors import AlreadyDeployedError, FilesystemError, StratumError
from .ledger import Ledger
from .lib.bootloader import BootRegistrar, BootRegistry
from .lib.bundle import BundleUnpacker
from .lib.cache import BundleCache
from .lib.env import DEFAULT_BOOT_TEMPLATE
from .lib.initramfs import InitramfsBuilder
from .lib.manifests import ManifestEntry
from .lib.preflight import require_uninitialized
from .lib.repo import LATEST, RepositoryClient, resolve
from .lib.storage import SnapshotFilesystem
from .pipeline import materialize, rollback
from .retention import CollectResult, RetentionCollector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeployResult:
    deployment_id: str
    target: str
    version: str
    state: DeploymentState
    collected: List[str] = field(default_factory=list)
    collect_error: Optional[str] = None


@dataclass(frozen=True)
class UpdateResult:
    current: Optional[str]
    available: ManifestEntry
    installed: bool
    deployed: Optional[DeployResult] = None


def initialize(config_path: str, overrides: Optional[Dict[str, Any]] = None) -> StratumConfig:
    """Create the managed directory layout, default config and boot template."""

    require_uninitialized(config_path)
    cfg = write_default_config(config_path, overrides)

    try:
        for d in (cfg.deployments_dir, cfg.shared_dir, cfg.cache_dir, cfg.overlay_dir, cfg.boot_artifacts_dir):
            d.mkdir(parents=True, exist_ok=True)
        if not cfg.boot_template_path.exists():
            cfg.boot_template_path.write_text(DEFAULT_BOOT_TEMPLATE, encoding="utf-8")
    except OSError as e:
        raise FilesystemError(f"Unable to create managed layout under {cfg.data_root}: {e}") from e
    if not cfg.ledger_path.exists():
        Ledger(cfg.ledger_path).save([])

    logger.info("Initialized %s (data_root=%s)", config_path, cfg.data_root)
    return cfg


class Deployer:
    """Runs the deployment lifecycle against injected collaborators."""

    def __init__(
        self,
        cfg: StratumConfig,
        *,
        fs: SnapshotFilesystem,
        boot_registry: BootRegistry,
        initramfs: InitramfsBuilder,
        client: Optional[RepositoryClient] = None,
    ) -> None:
        self.cfg = cfg
        self.fs = fs
        self.initramfs = initramfs
        self.client = client if client is not None else RepositoryClient(cfg.repo_url)
        self.cache = BundleCache(cfg.cache_dir, self.client)
        self.unpacker = BundleUnpacker(cfg.cache_dir)
        self.ledger = Ledger(cfg.ledger_path)
        self.registrar = BootRegistrar(boot_registry, cfg.boot_template_path, cfg.entry_prefix)
        self.collector = RetentionCollector(cfg, self.ledger, fs, self.registrar)

    def resolve(self, target: Optional[str] = None, version: str = LATEST) -> ManifestEntry:
        return resolve(self.client, target or self.cfg.repo_default_image, version or LATEST)

    def _prepare_slot(self, deployment_id: str) -> None:
        in_ledger = self.ledger.contains(deployment_id)
        present = deployment_dir(self.cfg, deployment_id).exists()

        if in_ledger and present:
            raise AlreadyDeployedError(f"{deployment_id} is already deployed")
        if in_ledger or present:
            # Dangling ledger line or leftover of an interrupted run.
            logger.warning("Clearing incomplete deployment %s before reinstalling", deployment_id)
            self.collector.remove(deployment_id)

    def deploy(self, target: Optional[str] = None, version: str = LATEST) -> DeployResult:
        target = target or self.cfg.repo_default_image
        entry = self.resolve(target, version)
        self._prepare_slot(entry.id)

        bundle = self.cache.ensure_cached(target, entry)

        ctx = MaterializeCtx(
            cfg=self.cfg,
            deployment_id=entry.id,
            target=target,
            bundle_path=bundle,
            fs=self.fs,
            unpacker=self.unpacker,
            initramfs=self.initramfs,
        )
        try:
            materialize(ctx)
            self.registrar.register(entry.id)
            self.ledger.prepend(entry.id)
        except Exception as e:
            logger.error("Deployment of %s failed at %s: %s", entry.id, ctx.state.value, e)
            problems = rollback(ctx, registrar=self.registrar)
            for problem in problems:
                logger.error("Rollback problem: %s", problem)
            raise

        if not self.cfg.keep_bundles:
            try:
                self.cache.evict(entry)
            except StratumError as e:
                logger.warning("Bundle for %s kept: %s", entry.id, e)

        collected: CollectResult | None = None
        collect_error: Optional[str] = None
        try:
            collected = self.collector.collect(sweep_orphans=True, protect=entry.id)
        except StratumError as e:
            # The new deployment is already recorded; retention retries next run.
            logger.warning("Retention pass incomplete: %s", e)
            collect_error = str(e)

        logger.info("Deployed %s (%s %s)", entry.id, target, entry.version)
        return DeployResult(
            deployment_id=entry.id,
            target=target,
            version=entry.version,
            state=ctx.state,
            collected=list(collected.removed) if collected else [],
            collect_error=collect_error,
        )

    def update(self, target: Optional[str] = None, *, check_only: bool = False) -> UpdateResult:
        current = self.ledger.head()
        latest = self.resolve(target, LATEST)
        if self.ledger.contains(latest.id):
            logger.info("Up to date (%s)", current)
            return UpdateResult(current=current, available=latest, installed=True)
        if check_only:
            return UpdateResult(current=current, available=latest, installed=False)
        result = self.deploy(target, latest.version)
        return UpdateResult(current=current, available=latest, installed=True, deployed=result)

    def list_deployments(self) -> List[str]:
        return self.ledger.load()

    def available_targets(self) -> List[str]:
        return self.client.list_targets()

    def collect(self) -> CollectResult:
        return self.collector.collect(sweep_orphans=True)

    def teardown(self, config_path: str) -> None:
        """Remove every deployment, shared state, cache and the config file."""

        ids = self.ledger.load()
        ids += [i for i in self.collector.orphans() if i not in ids]
        for deployment_id in ids:
            self.collector.remove(deployment_id)

        for var in sorted(self.cfg.shared_dir.glob("*/var")):
            self.fs.delete(var)

        for p in (self.cfg.boot_artifacts_dir, self.cfg.data_root):
            if p.exists():
                try:
                    shutil.rmtree(p)
                except OSError as e:
                    raise FilesystemError(f"Unable to remove {p}: {e}") from e

        try:
            Path(config_path).unlink(missing_ok=True)
        except OSError as e:
            raise FilesystemError(f"Unable to remove {config_path}: {e}") from e
        logger.info("Teardown complete")
