from .step_10_receive_root import ReceiveRootStep
from .step_20_receive_etc import ReceiveEtcStep
from .step_30_ensure_var import EnsureSharedVarStep
from .step_40_apply_overlay import ApplyOverlayStep
from .step_50_boot_artifacts import InstallBootArtifactsStep

__all__ = [
    "ReceiveRootStep",
    "ReceiveEtcStep",
    "EnsureSharedVarStep",
    "ApplyOverlayStep",
    "InstallBootArtifactsStep",
]
