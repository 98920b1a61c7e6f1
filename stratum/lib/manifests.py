from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

from ..errors import ManifestError

SUPPORTED_COMPRESSIONS = ("gz", "bz2", "xz")

DIGEST_ALGORITHMS = {
    32: "md5",
    40: "sha1",
    64: "sha256",
    128: "sha512",
}

_HEX = re.compile(r"^[0-9a-f]+$")


@dataclass(frozen=True)
class ManifestEntry:
    """One line of a target's version index: ``id:compression:version:digest``."""

    id: str
    compression: str
    version: str
    digest: str

    @property
    def bundle_name(self) -> str:
        return f"{self.id}.tar.{self.compression}"

    @property
    def digest_algorithm(self) -> str:
        return DIGEST_ALGORITHMS[len(self.digest)]


def parse_manifest_line(line: str) -> ManifestEntry:
    fields = line.strip().split(":")
    if len(fields) != 4:
        raise ManifestError(
            f"Manifest line has {len(fields)} fields, expected 4",
            context={"line": line.strip()},
        )

    ident, compression, version, digest = (f.strip() for f in fields)
    if not ident or not compression or not version or not digest:
        raise ManifestError("Manifest line has an empty field", context={"line": line.strip()})

    # The id becomes a directory name.
    if "/" in ident or ident.startswith("."):
        raise ManifestError(f"Invalid deployment id: {ident!r}")

    if compression not in SUPPORTED_COMPRESSIONS:
        raise ManifestError(
            f"Unsupported compression {compression!r}",
            hint=f"Supported: {', '.join(SUPPORTED_COMPRESSIONS)}",
        )

    digest = digest.lower()
    if not _HEX.match(digest) or len(digest) not in DIGEST_ALGORITHMS:
        raise ManifestError(f"Unrecognised digest for {ident}: {digest!r}")

    return ManifestEntry(id=ident, compression=compression, version=version, digest=digest)


def parse_database(text: str) -> List[ManifestEntry]:
    """Parse a newest-first version index, skipping blank and comment lines."""
    entries: List[ManifestEntry] = []
    for line in text.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        entries.append(parse_manifest_line(line))
    return entries
