from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List

from .config import StratumConfig
from .lib.bundle import BundleUnpacker
from .lib.initramfs import InitramfsBuilder
from .lib.storage import SnapshotFilesystem


class DeploymentState(str, Enum):
    ABSENT = "absent"
    ROOT_WRITTEN = "root_written"
    ETC_WRITTEN = "etc_written"
    VAR_ENSURED = "var_ensured"
    OVERLAY_APPLIED = "overlay_applied"
    COMPLETE = "complete"


def deployment_dir(cfg: StratumConfig, deployment_id: str) -> Path:
    return cfg.deployments_dir / deployment_id


def rootfs_dir(cfg: StratumConfig, deployment_id: str) -> Path:
    return deployment_dir(cfg, deployment_id) / "rootfs"


def boot_artifacts_dir(cfg: StratumConfig, deployment_id: str) -> Path:
    return cfg.boot_artifacts_dir / deployment_id


def shared_var_dir(cfg: StratumConfig, target: str) -> Path:
    return cfg.shared_dir / target / "var"


@dataclass
class MaterializeCtx:
    cfg: StratumConfig
    deployment_id: str
    target: str
    bundle_path: Path
    fs: SnapshotFilesystem
    unpacker: BundleUnpacker
    initramfs: InitramfsBuilder
    state: DeploymentState = DeploymentState.ABSENT
    ran_steps: List[str] = field(default_factory=list)

    @property
    def deployment_dir(self) -> Path:
        return deployment_dir(self.cfg, self.deployment_id)

    @property
    def rootfs(self) -> Path:
        return rootfs_dir(self.cfg, self.deployment_id)

    @property
    def shared_var(self) -> Path:
        return shared_var_dir(self.cfg, self.target)

    @property
    def boot_artifacts(self) -> Path:
        return boot_artifacts_dir(self.cfg, self.deployment_id)
