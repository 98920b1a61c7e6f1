from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import FilesystemError, NetworkError, NotFoundError
from .manifests import ManifestEntry, parse_database

logger = logging.getLogger(__name__)

LATEST = "latest"

CONNECT_TIMEOUT_SECONDS = 10
READ_TIMEOUT_SECONDS = 60
CHUNK_SIZE = 1024 * 1024


def build_session() -> requests.Session:
    retry = Retry(
        total=3,
        connect=3,
        read=3,
        backoff_factor=0.5,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    sess = requests.Session()
    sess.mount("https://", adapter)
    sess.mount("http://", adapter)
    sess.headers.update({"User-Agent": "stratum/0.1"})
    return sess


class RepositoryClient:
    """Read-only client for an image repository.

    Layout::

        {repo}/list                          newline list of targets
        {repo}/{target}/database             id:compression:version:digest, newest first
        {repo}/{target}/{id}.tar.{comp}      bundle
    """

    def __init__(self, repo_url: str, *, session: Optional[requests.Session] = None) -> None:
        self.repo_url = repo_url.rstrip("/")
        self.session = session if session is not None else build_session()

    def _get(self, url: str, *, stream: bool = False) -> requests.Response:
        logger.info("GET %s", url)
        try:
            resp = self.session.get(
                url,
                timeout=(CONNECT_TIMEOUT_SECONDS, READ_TIMEOUT_SECONDS),
                stream=stream,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Unable to fetch {url}: {e}", context={"url": url}) from e
        return resp

    def list_targets(self) -> List[str]:
        text = self._get(f"{self.repo_url}/list").text
        return [line.strip() for line in text.splitlines() if line.strip()]

    def fetch_database(self, target: str) -> List[ManifestEntry]:
        text = self._get(f"{self.repo_url}/{target}/database").text
        return parse_database(text)

    def bundle_url(self, target: str, entry: ManifestEntry) -> str:
        return f"{self.repo_url}/{target}/{entry.bundle_name}"

    def download(self, url: str, dest: Path) -> None:
        """Stream ``url`` into ``dest`` via a ``.part`` file renamed on completion."""

        part = dest.with_name(dest.name + ".part")
        resp = self._get(url, stream=True)
        try:
            with open(part, "wb") as f:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                f.flush()
                os.fsync(f.fileno())
        except requests.RequestException as e:
            part.unlink(missing_ok=True)
            raise NetworkError(f"Download interrupted: {url}: {e}", context={"url": url}) from e
        except OSError as e:
            if part.is_file():
                part.unlink()
            raise FilesystemError(f"Unable to write {part}: {e}", context={"url": url}) from e
        finally:
            resp.close()
        try:
            os.replace(part, dest)
        except OSError as e:
            raise FilesystemError(f"Unable to move {part} into place: {e}") from e


def resolve(client: RepositoryClient, target: str, version: str = LATEST) -> ManifestEntry:
    """Resolve (target, version) to a manifest entry.

    "latest" is the first (newest) entry; any other selector matches the first
    entry with that version.
    """

    entries = client.fetch_database(target)
    if not entries:
        raise NotFoundError(f"No versions published for target {target!r}")

    if version == LATEST:
        entry = entries[0]
    else:
        entry = next((e for e in entries if e.version == version), None)
        if entry is None:
            raise NotFoundError(
                f"Version {version!r} not found for target {target!r}",
                hint=f"Newest available is {entries[0].version}",
            )

    logger.info("Resolved %s@%s -> %s", target, version, entry.id)
    return entry
