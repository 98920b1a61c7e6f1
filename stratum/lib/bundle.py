from __future__ import annotations

import logging
import lzma
import os
import shutil
import tarfile
import zlib
from pathlib import Path
from typing import Dict, List

from ..errors import CorruptBundleError

logger = logging.getLogger(__name__)

# Layer name -> member suffix inside the bundle.
LAYERS: Dict[str, str] = {
    "root": "rootfs",
    "etc": "etc",
    "var": "var",
}


def layer_member_name(deployment_id: str, layer_name: str) -> str:
    try:
        suffix = LAYERS[layer_name]
    except KeyError:
        raise CorruptBundleError(f"Unknown layer {layer_name!r}") from None
    return f"{deployment_id}-{suffix}.img"


def _deployment_id(bundle_path: Path) -> str:
    # {id}.tar.{compression}
    name = bundle_path.name
    marker = name.rfind(".tar.")
    if marker <= 0:
        raise CorruptBundleError(f"Not a bundle file name: {name}")
    return name[:marker]


def _find_member(tf: tarfile.TarFile, wanted: str) -> tarfile.TarInfo | None:
    for member in tf.getmembers():
        name = member.name[2:] if member.name.startswith("./") else member.name
        if name == wanted and member.isfile():
            return member
    return None


class BundleUnpacker:
    """Extracts layer images from a cached bundle, one at a time."""

    def __init__(self, work_dir: Path) -> None:
        self.work_dir = Path(work_dir)

    def layer_path(self, deployment_id: str, layer_name: str) -> Path:
        return self.work_dir / layer_member_name(deployment_id, layer_name)

    def extract_layer(self, bundle_path: Path, layer_name: str) -> Path:
        deployment_id = _deployment_id(Path(bundle_path))
        wanted = layer_member_name(deployment_id, layer_name)
        out = self.work_dir / wanted
        if out.exists():
            logger.info("Layer %s already extracted", wanted)
            return out

        compression = Path(bundle_path).suffix.lstrip(".")
        part = out.with_name(out.name + ".part")
        self.work_dir.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(bundle_path, mode=f"r:{compression}") as tf:
                member = _find_member(tf, wanted)
                if member is None:
                    raise CorruptBundleError(
                        f"Layer {wanted} missing from bundle",
                        context={"bundle": str(bundle_path)},
                    )
                src = tf.extractfile(member)
                if src is None:
                    raise CorruptBundleError(f"Layer {wanted} is not a regular file")
                with src, open(part, "wb") as dst:
                    shutil.copyfileobj(src, dst, length=1024 * 1024)
        except (tarfile.TarError, lzma.LZMAError, zlib.error, EOFError, OSError) as e:
            part.unlink(missing_ok=True)
            raise CorruptBundleError(f"Unable to read bundle {bundle_path}: {e}") from e
        except CorruptBundleError:
            part.unlink(missing_ok=True)
            raise

        os.replace(part, out)
        logger.info("Extracted layer %s", wanted)
        return out

    def discard_layers(self, deployment_id: str) -> List[Path]:
        removed: List[Path] = []
        for layer_name in LAYERS:
            p = self.layer_path(deployment_id, layer_name)
            for candidate in (p, p.with_name(p.name + ".part")):
                if candidate.exists():
                    candidate.unlink()
                    removed.append(candidate)
        return removed
