"""Shared test fixtures."""

from __future__ import annotations

import hashlib
import io
import tarfile
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

import pytest
import requests

from stratum.config import StratumConfig
from stratum.deploy import Deployer
from stratum.lib.env import DEFAULT_BOOT_TEMPLATE
from stratum.lib.inprocess import InProcessBootRegistry, InProcessFilesystem, InProcessInitramfsBuilder
from stratum.lib.repo import RepositoryClient

REPO_URL = "https://repo.test/stratum"

ROOT_FILES = {
    "usr/bin/sh": b"#!sh\n",
    "usr/lib/modules/6.6.1/vmlinuz": b"kernel-6.6.1",
    "etc/": None,
}
ETC_FILES = {"hostname": b"stratum\n", "fstab": b"/var\n"}
VAR_FILES = {"lib/pkg/state": b"fresh\n"}


def make_tar(files: Dict[str, Optional[bytes]], mode: str = "w") -> bytes:
    """Build a tar archive; a ``None`` value adds a directory."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=mode) as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name.rstrip("/"))
            if data is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tf.addfile(info)
            else:
                info.size = len(data)
                tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def make_bundle(
    deployment_id: str,
    *,
    compression: str = "gz",
    root: Optional[Dict[str, Optional[bytes]]] = None,
    etc: Optional[Dict[str, Optional[bytes]]] = None,
    var: Optional[Dict[str, Optional[bytes]]] = None,
    omit: Iterable[str] = (),
) -> bytes:
    layers = {
        "rootfs": make_tar(root if root is not None else ROOT_FILES),
        "etc": make_tar(etc if etc is not None else ETC_FILES),
        "var": make_tar(var if var is not None else VAR_FILES),
    }
    members = {f"{deployment_id}-{k}.img": v for k, v in layers.items() if k not in set(omit)}
    return make_tar(members, mode=f"w:{compression}")


class FakeResponse:
    def __init__(self, url: str, status_code: int, content: bytes) -> None:
        self.url = url
        self.status_code = status_code
        self.content = content
        self.closed = False

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} for {self.url}")

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Serves a static URL map the way requests.Session.get would."""

    def __init__(self) -> None:
        self.routes: Dict[str, bytes] = {}
        self.requests: List[str] = []
        self.offline = False

    def get(self, url: str, timeout=None, stream: bool = False) -> FakeResponse:
        self.requests.append(url)
        if self.offline:
            raise requests.ConnectionError(f"cannot reach {url}")
        if url not in self.routes:
            return FakeResponse(url, 404, b"not found")
        return FakeResponse(url, 200, self.routes[url])


class FakeRepo:
    def __init__(self, session: FakeSession, url: str = REPO_URL) -> None:
        self.session = session
        self.url = url
        self.targets: Dict[str, List[str]] = {}
        self._refresh_list()

    def _refresh_list(self) -> None:
        self.session.routes[f"{self.url}/list"] = "".join(f"{t}\n" for t in self.targets).encode()

    def publish(
        self,
        target: str,
        deployment_id: str,
        version: str,
        *,
        compression: str = "gz",
        payload: Optional[bytes] = None,
        digest: Optional[str] = None,
        **bundle_kwargs,
    ) -> bytes:
        """Add a version as the newest entry of ``target``'s database."""
        data = payload if payload is not None else make_bundle(deployment_id, compression=compression, **bundle_kwargs)
        digest = digest or hashlib.sha256(data).hexdigest()
        lines = self.targets.setdefault(target, [])
        lines.insert(0, f"{deployment_id}:{compression}:{version}:{digest}")
        self.session.routes[f"{self.url}/{target}/database"] = "".join(f"{l}\n" for l in lines).encode()
        self.session.routes[f"{self.url}/{target}/{deployment_id}.tar.{compression}"] = data
        self._refresh_list()
        return data


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def repo(session: FakeSession) -> FakeRepo:
    return FakeRepo(session)


@pytest.fixture
def client(session: FakeSession) -> RepositoryClient:
    return RepositoryClient(REPO_URL, session=session)  # type: ignore[arg-type]


def make_config(tmp_path: Path, **overrides) -> StratumConfig:
    raw = {
        "enable_overlay": False,
        "repo_url": REPO_URL,
        "repo_default_image": "base",
        "deploy_keep": 2,
        "paths": {
            "data_root": str(tmp_path / "data"),
            "boot_artifacts_dir": str(tmp_path / "boot" / "stratum"),
            "entries_dir": str(tmp_path / "boot" / "loader" / "entries"),
        },
    }
    raw.update(overrides)
    cfg = StratumConfig(raw=raw).validate()
    cfg.data_root.mkdir(parents=True, exist_ok=True)
    cfg.boot_template_path.write_text(DEFAULT_BOOT_TEMPLATE, encoding="utf-8")
    return cfg


@pytest.fixture
def cfg(tmp_path: Path) -> StratumConfig:
    return make_config(tmp_path)


@pytest.fixture
def fs() -> InProcessFilesystem:
    return InProcessFilesystem()


@pytest.fixture
def boot_registry(cfg: StratumConfig) -> InProcessBootRegistry:
    return InProcessBootRegistry(cfg.entries_dir)


@pytest.fixture
def initramfs() -> InProcessInitramfsBuilder:
    return InProcessInitramfsBuilder()


@pytest.fixture
def deployer(
    cfg: StratumConfig,
    fs: InProcessFilesystem,
    boot_registry: InProcessBootRegistry,
    initramfs: InProcessInitramfsBuilder,
    client: RepositoryClient,
) -> Deployer:
    return Deployer(cfg, fs=fs, boot_registry=boot_registry, initramfs=initramfs, client=client)
