from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from .config import StratumConfig
from .deployment import (
    DeploymentState,
    MaterializeCtx,
    boot_artifacts_dir,
    deployment_dir,
    rootfs_dir,
)
from .errors import FilesystemError
from .lib.bootloader import BootRegistrar
from .lib.storage import SnapshotFilesystem
from .steps import (
    ApplyOverlayStep,
    EnsureSharedVarStep,
    InstallBootArtifactsStep,
    ReceiveEtcStep,
    ReceiveRootStep,
)

logger = logging.getLogger(__name__)


class Step(Protocol):
    """One state transition of a deployment."""

    step_id: str
    reaches: DeploymentState

    def run(self, ctx: MaterializeCtx) -> None:
        ...


@dataclass(frozen=True)
class MaterializeResult:
    state: DeploymentState
    ran_steps: List[str]


def build_steps() -> List[Step]:
    return [
        ReceiveRootStep(),
        ReceiveEtcStep(),
        EnsureSharedVarStep(),
        ApplyOverlayStep(),
        InstallBootArtifactsStep(),
    ]


def materialize(ctx: MaterializeCtx, steps: Optional[Sequence[Step]] = None) -> MaterializeResult:
    """Drive a deployment from Absent to Complete.

    Each step runs only if the previous one succeeded. On failure the exception
    propagates with ``ctx.state`` holding the last state reached; cleaning up is
    the caller's job (see :func:`rollback`).
    """

    for step in steps if steps is not None else build_steps():
        logger.info("[%s] running %s", ctx.deployment_id, step.step_id)
        try:
            step.run(ctx)
        except OSError as e:
            raise FilesystemError(f"Step {step.step_id} failed for {ctx.deployment_id}: {e}") from e
        ctx.state = step.reaches
        ctx.ran_steps.append(step.step_id)
        logger.info("[%s] state -> %s", ctx.deployment_id, ctx.state.value)

    return MaterializeResult(state=ctx.state, ran_steps=list(ctx.ran_steps))


def remove_deployment_tree(fs: SnapshotFilesystem, cfg: StratumConfig, deployment_id: str) -> None:
    """Unseal and delete ``deployments/<id>`` including nested subvolumes."""

    root = rootfs_dir(cfg, deployment_id)
    if fs.is_subvolume(root):
        fs.set_read_only(root, False)
    fs.delete(deployment_dir(cfg, deployment_id))


def remove_boot_artifacts(cfg: StratumConfig, deployment_id: str) -> None:
    p = boot_artifacts_dir(cfg, deployment_id)
    if not p.exists():
        return
    try:
        shutil.rmtree(p)
    except OSError as e:
        raise FilesystemError(f"Unable to remove boot artifacts {p}: {e}") from e


def rollback(
    ctx: MaterializeCtx,
    *,
    registrar: Optional[BootRegistrar] = None,
) -> List[str]:
    """Best-effort removal of an in-progress deployment.

    Never raises. The shared var subvolume is left alone. Returns the problems
    encountered so the caller can report them.
    """

    problems: List[str] = []
    deployment_id = ctx.deployment_id
    logger.warning("Rolling back deployment %s (reached %s)", deployment_id, ctx.state.value)

    actions = [
        ("deployment tree", lambda: remove_deployment_tree(ctx.fs, ctx.cfg, deployment_id)),
        ("boot artifacts", lambda: remove_boot_artifacts(ctx.cfg, deployment_id)),
        ("layer images", lambda: ctx.unpacker.discard_layers(deployment_id)),
    ]
    if registrar is not None:
        actions.insert(0, ("boot entry", lambda: registrar.unregister(deployment_id)))

    for label, action in actions:
        try:
            action()
        except Exception as e:
            logger.error("Rollback of %s for %s failed: %s", label, deployment_id, e)
            problems.append(f"{label}: {e}")

    if not problems:
        logger.info("Rollback of %s complete", deployment_id)
    ctx.state = DeploymentState.ABSENT if not problems else ctx.state
    return problems
