from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from conftest import REPO_URL, FakeRepo, FakeSession, make_bundle
from stratum.errors import CorruptBundleError, IntegrityError
from stratum.lib.bundle import BundleUnpacker
from stratum.lib.cache import BundleCache
from stratum.lib.repo import RepositoryClient, resolve


def test_ensure_cached_downloads_once(
    tmp_path: Path, repo: FakeRepo, session: FakeSession, client: RepositoryClient
) -> None:
    data = repo.publish("base", "base-v1", "v1")
    entry = resolve(client, "base")
    cache = BundleCache(tmp_path / "cache", client)

    first = cache.ensure_cached("base", entry)
    session.offline = True
    second = cache.ensure_cached("base", entry)

    assert first == second == tmp_path / "cache" / "base-v1.tar.gz"
    assert first.read_bytes() == data
    bundle_url = f"{REPO_URL}/base/base-v1.tar.gz"
    assert session.requests.count(bundle_url) == 1
    assert not list((tmp_path / "cache").glob("*.part"))


def test_digest_mismatch_discards_download(tmp_path: Path, repo: FakeRepo, client: RepositoryClient) -> None:
    repo.publish("base", "base-v1", "v1", digest=hashlib.sha256(b"other").hexdigest())
    entry = resolve(client, "base")
    cache = BundleCache(tmp_path / "cache", client)

    with pytest.raises(IntegrityError):
        cache.ensure_cached("base", entry)

    assert not cache.bundle_path(entry).exists()


def test_cached_bundle_is_verified_on_every_use(tmp_path: Path, repo: FakeRepo, client: RepositoryClient) -> None:
    repo.publish("base", "base-v1", "v1")
    entry = resolve(client, "base")
    cache = BundleCache(tmp_path / "cache", client)
    path = cache.ensure_cached("base", entry)

    path.write_bytes(b"tampered")

    with pytest.raises(IntegrityError):
        cache.ensure_cached("base", entry)
    assert not path.exists()


def test_evict_removes_bundle(tmp_path: Path, repo: FakeRepo, client: RepositoryClient) -> None:
    repo.publish("base", "base-v1", "v1")
    entry = resolve(client, "base")
    cache = BundleCache(tmp_path / "cache", client)
    cache.ensure_cached("base", entry)

    cache.evict(entry)

    assert not cache.bundle_path(entry).exists()


@pytest.mark.parametrize("compression", ["gz", "bz2", "xz"])
def test_extract_layer(tmp_path: Path, compression: str) -> None:
    bundle = tmp_path / f"base-v1.tar.{compression}"
    bundle.write_bytes(make_bundle("base-v1", compression=compression))
    unpacker = BundleUnpacker(tmp_path / "work")

    layer = unpacker.extract_layer(bundle, "etc")

    assert layer == tmp_path / "work" / "base-v1-etc.img"
    assert layer.stat().st_size > 0


def test_extract_layer_skips_existing_file(tmp_path: Path) -> None:
    bundle = tmp_path / "base-v1.tar.gz"
    bundle.write_bytes(make_bundle("base-v1"))
    unpacker = BundleUnpacker(tmp_path / "work")
    existing = unpacker.layer_path("base-v1", "root")
    existing.parent.mkdir(parents=True)
    existing.write_bytes(b"resumed")

    assert unpacker.extract_layer(bundle, "root").read_bytes() == b"resumed"


def test_extract_missing_layer_is_corrupt(tmp_path: Path) -> None:
    bundle = tmp_path / "base-v1.tar.gz"
    bundle.write_bytes(make_bundle("base-v1", omit=["var"]))
    unpacker = BundleUnpacker(tmp_path / "work")

    with pytest.raises(CorruptBundleError):
        unpacker.extract_layer(bundle, "var")
    assert not list((tmp_path / "work").iterdir())


def test_extract_from_garbage_is_corrupt(tmp_path: Path) -> None:
    bundle = tmp_path / "base-v1.tar.gz"
    bundle.write_bytes(b"definitely not gzip")

    with pytest.raises(CorruptBundleError):
        BundleUnpacker(tmp_path / "work").extract_layer(bundle, "root")


def test_discard_layers(tmp_path: Path) -> None:
    bundle = tmp_path / "base-v1.tar.gz"
    bundle.write_bytes(make_bundle("base-v1"))
    unpacker = BundleUnpacker(tmp_path / "work")
    unpacker.extract_layer(bundle, "root")
    unpacker.extract_layer(bundle, "etc")

    removed = unpacker.discard_layers("base-v1")

    assert len(removed) == 2
    assert not list((tmp_path / "work").iterdir())
