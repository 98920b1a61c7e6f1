from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from ..errors import FilesystemError, IntegrityError
from .manifests import ManifestEntry
from .repo import RepositoryClient

logger = logging.getLogger(__name__)


def file_digest(path: Path, algorithm: str) -> str:
    h = hashlib.new(algorithm)
    try:
        with open(path, "rb") as f:
            for block in iter(lambda: f.read(1024 * 1024), b""):
                h.update(block)
    except OSError as e:
        raise FilesystemError(f"Unable to read {path}: {e}") from e
    return h.hexdigest()


class BundleCache:
    """Local store of compressed bundles, verified before every use."""

    def __init__(self, cache_dir: Path, client: RepositoryClient) -> None:
        self.cache_dir = Path(cache_dir)
        self.client = client

    def bundle_path(self, entry: ManifestEntry) -> Path:
        return self.cache_dir / entry.bundle_name

    def ensure_cached(self, target: str, entry: ManifestEntry) -> Path:
        path = self.bundle_path(entry)
        if path.exists():
            logger.info("Using cached bundle %s", path)
        else:
            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FilesystemError(f"Unable to create cache directory {self.cache_dir}: {e}") from e
            self.client.download(self.client.bundle_url(target, entry), path)
            logger.info("Downloaded bundle %s", path)

        self.verify(entry, path)
        return path

    def verify(self, entry: ManifestEntry, path: Path) -> None:
        actual = file_digest(path, entry.digest_algorithm)
        if actual != entry.digest:
            path.unlink(missing_ok=True)
            raise IntegrityError(
                f"Bundle digest mismatch for {entry.id}; cached copy discarded.",
                hint="Re-run to download it again; if it persists the repository is serving a bad artifact.",
                context={
                    "path": str(path),
                    "algorithm": entry.digest_algorithm,
                    "expected": entry.digest,
                    "actual": actual,
                },
            )
        logger.info("Verified %s (%s)", path.name, entry.digest_algorithm)

    def evict(self, entry: ManifestEntry) -> None:
        for p in (self.bundle_path(entry), self.bundle_path(entry).with_name(entry.bundle_name + ".part")):
            if p.exists():
                try:
                    p.unlink()
                except OSError as e:
                    raise FilesystemError(f"Unable to evict {p}: {e}") from e
                logger.info("Evicted %s", p)
