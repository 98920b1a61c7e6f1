from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol

from ..errors import BootRegistrationError, StratumError
from .command import run_cmd
from .env import DEPLOYMENT_TOKEN

logger = logging.getLogger(__name__)


class BootRegistry(Protocol):
    def write_entry(self, name: str, content: str) -> Path:
        ...

    def set_next_boot(self, name: str) -> None:
        """Boot ``name`` once; the default entry stays unchanged."""
        ...

    def remove_entry(self, name: str) -> None:
        ...

    def has_entry(self, name: str) -> bool:
        ...


class SystemdBootRegistry:
    """Loader entries in ``entries_dir``; one-shot selection through bootctl."""

    def __init__(self, entries_dir: Path) -> None:
        self.entries_dir = Path(entries_dir)

    def entry_path(self, name: str) -> Path:
        return self.entries_dir / f"{name}.conf"

    def write_entry(self, name: str, content: str) -> Path:
        p = self.entry_path(name)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_name(p.name + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, p)
        logger.info("Wrote boot entry %s", p)
        return p

    def set_next_boot(self, name: str) -> None:
        run_cmd(
            ["bootctl", "set-oneshot", f"{name}.conf"],
            error_cls=BootRegistrationError,
        )

    def remove_entry(self, name: str) -> None:
        p = self.entry_path(name)
        if p.exists():
            p.unlink()
            logger.info("Removed boot entry %s", p)

    def has_entry(self, name: str) -> bool:
        return self.entry_path(name).exists()


def render_entry(template: str, deployment_id: str) -> str:
    if DEPLOYMENT_TOKEN not in template:
        raise BootRegistrationError(f"Boot entry template lacks the {DEPLOYMENT_TOKEN} placeholder")
    return template.replace(DEPLOYMENT_TOKEN, deployment_id)


class BootRegistrar:
    def __init__(self, registry: BootRegistry, template_path: Path, entry_prefix: str) -> None:
        self.registry = registry
        self.template_path = Path(template_path)
        self.entry_prefix = entry_prefix

    def entry_name(self, deployment_id: str) -> str:
        return f"{self.entry_prefix}{deployment_id}"

    def register(self, deployment_id: str) -> None:
        """Write the entry and select it for the next boot only."""

        name = self.entry_name(deployment_id)
        try:
            template = self.template_path.read_text(encoding="utf-8")
            self.registry.write_entry(name, render_entry(template, deployment_id))
            self.registry.set_next_boot(name)
        except BootRegistrationError:
            raise
        except (OSError, StratumError) as e:
            raise BootRegistrationError(f"Unable to register boot entry {name}: {e}") from e
        logger.info("Boot entry %s set as next boot", name)

    def unregister(self, deployment_id: str) -> None:
        try:
            self.registry.remove_entry(self.entry_name(deployment_id))
        except OSError as e:
            raise BootRegistrationError(f"Unable to remove boot entry for {deployment_id}: {e}") from e
