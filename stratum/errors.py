"""Error taxonomy for deployment operations."""

from __future__ import annotations

from typing import Dict, Mapping, Optional


class StratumError(Exception):
    """Base error carrying an optional hint and string context."""

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.hint = hint
        self.context: Dict[str, str] = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        for k, v in self.context.items():
            if v:
                parts.append(f"  {k}: {v}")
        return "\n".join(parts)


class NetworkError(StratumError):
    """Repository unreachable or artifact missing. Retry by re-invocation."""


class NotFoundError(StratumError):
    """Version index empty or no entry matches the selector."""


class ManifestError(StratumError):
    """A version index line could not be parsed."""


class IntegrityError(StratumError):
    """Bundle digest does not match the published digest."""


class CorruptBundleError(StratumError):
    """Expected layer image missing from the bundle archive."""


class FilesystemError(StratumError):
    """Snapshot create/receive/toggle/delete failed."""


class BootRegistrationError(StratumError):
    """Boot entry could not be written or selected for next boot."""


class AlreadyDeployedError(StratumError):
    """The resolved deployment is already installed. Benign."""


class PreconditionError(StratumError):
    """Environment is not fit for the requested operation."""


class ConfigError(PreconditionError):
    pass
