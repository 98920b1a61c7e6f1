from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

from .errors import ConfigError, FilesystemError, PreconditionError
from .lib.env import PATHS

DEFAULT_CONFIG: Dict[str, Any] = {
    "enable_overlay": False,
    "repo_url": "https://images.example.org/stratum",
    "repo_default_image": "base",
    "deploy_keep": 2,
    "keep_bundles": True,
}


@dataclass(frozen=True)
class StratumConfig:
    """Deployment settings, read once and handed to each component."""

    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def enable_overlay(self) -> bool:
        return bool(self.raw.get("enable_overlay", False))

    @property
    def repo_url(self) -> str:
        return str(self.raw.get("repo_url") or DEFAULT_CONFIG["repo_url"]).rstrip("/")

    @property
    def repo_default_image(self) -> str:
        return str(self.raw.get("repo_default_image") or DEFAULT_CONFIG["repo_default_image"])

    @property
    def deploy_keep(self) -> int:
        return int(self.raw.get("deploy_keep", DEFAULT_CONFIG["deploy_keep"]))

    @property
    def keep_bundles(self) -> bool:
        return bool(self.raw.get("keep_bundles", True))

    @property
    def data_root(self) -> Path:
        return Path(((self.raw.get("paths") or {}).get("data_root")) or PATHS.data_root)

    @property
    def boot_artifacts_dir(self) -> Path:
        return Path(((self.raw.get("paths") or {}).get("boot_artifacts_dir")) or PATHS.boot_artifacts_dir)

    @property
    def entries_dir(self) -> Path:
        return Path(((self.raw.get("paths") or {}).get("entries_dir")) or PATHS.entries_dir)

    @property
    def entry_prefix(self) -> str:
        return str(((self.raw.get("paths") or {}).get("entry_prefix")) or PATHS.entry_prefix)

    # Derived locations under data_root.

    @property
    def deployments_dir(self) -> Path:
        return self.data_root / "deployments"

    @property
    def shared_dir(self) -> Path:
        return self.data_root / "shared"

    @property
    def cache_dir(self) -> Path:
        return self.data_root / "cache"

    @property
    def overlay_dir(self) -> Path:
        return self.data_root / "overlay"

    @property
    def ledger_path(self) -> Path:
        return self.data_root / "ledger"

    @property
    def boot_template_path(self) -> Path:
        return self.data_root / "boot-entry.template"

    def validate(self) -> "StratumConfig":
        keep = self.raw.get("deploy_keep", DEFAULT_CONFIG["deploy_keep"])
        if isinstance(keep, bool) or not isinstance(keep, int) or keep < 1:
            raise ConfigError(f"deploy_keep must be an integer >= 1, got {keep!r}")
        if not isinstance(self.raw.get("enable_overlay", False), bool):
            raise ConfigError("enable_overlay must be true or false")
        if not self.repo_url.startswith(("http://", "https://")):
            raise ConfigError(f"repo_url must be an http(s) URL, got {self.repo_url!r}")
        paths = self.raw.get("paths") or {}
        if not isinstance(paths, dict):
            raise ConfigError("paths must be a mapping")
        return self


def load_config(path: str) -> StratumConfig:
    p = Path(path)
    if not p.exists():
        raise PreconditionError(
            f"Configuration not found: {path}",
            hint="Run `stratum init` first.",
        )

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Unable to read {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping/object")

    return StratumConfig(raw=raw).validate()


def write_default_config(path: str, overrides: Dict[str, Any] | None = None) -> StratumConfig:
    raw = dict(DEFAULT_CONFIG)
    raw.update(overrides or {})
    cfg = StratumConfig(raw=raw).validate()

    p = Path(path)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(yaml.safe_dump(raw, sort_keys=False), encoding="utf-8")
    except OSError as e:
        raise FilesystemError(f"Unable to write {path}: {e}") from e
    return cfg
