from __future__ import annotations

from pathlib import Path

import pytest

from stratum.config import StratumConfig
from stratum.errors import FilesystemError
from stratum.ledger import Ledger
from stratum.lib.bootloader import BootRegistrar
from stratum.lib.inprocess import InProcessBootRegistry, InProcessFilesystem
from stratum.retention import RetentionCollector, removal_set


@pytest.fixture
def ledger(cfg: StratumConfig) -> Ledger:
    return Ledger(cfg.ledger_path)


@pytest.fixture
def collector(
    cfg: StratumConfig, ledger: Ledger, fs: InProcessFilesystem, boot_registry: InProcessBootRegistry
) -> RetentionCollector:
    registrar = BootRegistrar(boot_registry, cfg.boot_template_path, cfg.entry_prefix)
    return RetentionCollector(cfg, ledger, fs, registrar)


def _install(cfg: StratumConfig, fs: InProcessFilesystem, ledger: Ledger, deployment_id: str) -> Path:
    root = cfg.deployments_dir / deployment_id / "rootfs"
    root.mkdir(parents=True)
    fs.subvolumes.add(root)
    fs.read_only.add(root)
    ledger.prepend(deployment_id)
    return root


def test_ledger_prepend_and_remove(tmp_path: Path) -> None:
    ledger = Ledger(tmp_path / "ledger")
    assert ledger.load() == []
    assert ledger.head() is None

    ledger.prepend("a")
    ledger.prepend("b")
    ledger.prepend("a")

    assert ledger.load() == ["a", "b"]
    assert ledger.head() == "a"
    assert ledger.remove("b") == ["a"]
    assert (tmp_path / "ledger").read_text() == "a\n"
    assert not (tmp_path / "ledger.tmp").exists()


def test_ledger_ignores_blank_and_duplicate_lines(tmp_path: Path) -> None:
    path = tmp_path / "ledger"
    path.write_text("b\n\na\nb\n")

    assert Ledger(path).load() == ["b", "a"]


@pytest.mark.parametrize(
    "ids, keep, expected",
    [
        (["c", "b", "a"], 2, ["a"]),
        (["c", "b"], 2, []),
        (["c", "b", "a"], 1, ["b", "a"]),
        # Exact ids only; substrings of retained ids are still removed.
        (["base-1", "base-10", "base-1-rc"], 2, ["base-1-rc"]),
    ],
)
def test_removal_set(ids, keep, expected) -> None:
    assert removal_set(ids, keep) == expected


def test_removal_set_requires_positive_keep() -> None:
    with pytest.raises(ValueError):
        removal_set(["a"], 0)


def test_collect_removes_beyond_keep(
    cfg: StratumConfig, ledger: Ledger, fs: InProcessFilesystem, collector: RetentionCollector
) -> None:
    for ident in ("a", "b", "c"):
        _install(cfg, fs, ledger, ident)

    result = collector.collect()

    assert result.removed == ["a"]
    assert ledger.load() == ["c", "b"]
    assert not (cfg.deployments_dir / "a").exists()


def test_collect_repairs_dangling_ledger_entries(
    cfg: StratumConfig, ledger: Ledger, fs: InProcessFilesystem, collector: RetentionCollector
) -> None:
    _install(cfg, fs, ledger, "a")
    ledger.prepend("ghost")

    result = collector.collect()

    assert result.repaired == ["ghost"]
    assert ledger.load() == ["a"]


def test_orphans_exclude_ledger_and_protected(
    cfg: StratumConfig, ledger: Ledger, fs: InProcessFilesystem, collector: RetentionCollector
) -> None:
    _install(cfg, fs, ledger, "a")
    (cfg.deployments_dir / "stray").mkdir()
    (cfg.deployments_dir / "new").mkdir()

    assert collector.orphans(protect="new") == ["stray"]
    result = collector.collect(sweep_orphans=True, protect="new")
    assert result.removed == ["stray"]
    assert (cfg.deployments_dir / "new").exists()


def test_collect_keeps_ledger_line_when_delete_fails(
    cfg: StratumConfig, ledger: Ledger, fs: InProcessFilesystem, collector: RetentionCollector
) -> None:
    for ident in ("a", "b", "c"):
        _install(cfg, fs, ledger, ident)
    fs.fail_on["delete:a"] = FilesystemError("busy")

    with pytest.raises(FilesystemError, match="partially removed"):
        collector.collect()

    assert ledger.load() == ["c", "b", "a"]


def test_remove_deletes_boot_entry_and_artifacts(
    cfg: StratumConfig,
    ledger: Ledger,
    fs: InProcessFilesystem,
    boot_registry: InProcessBootRegistry,
    collector: RetentionCollector,
) -> None:
    _install(cfg, fs, ledger, "a")
    collector.registrar.register("a")
    artifacts = cfg.boot_artifacts_dir / "a"
    artifacts.mkdir(parents=True)
    (artifacts / "vmlinuz").write_bytes(b"k")

    collector.remove("a")

    assert not boot_registry.has_entry("stratum-a")
    assert not artifacts.exists()
    assert ledger.load() == []
    assert "set_read_only:rootfs:rw" in fs.calls
