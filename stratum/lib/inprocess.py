"""In-process stand-ins for the privileged collaborators.

They operate on ordinary directories so the deployment state machine can be
exercised without btrfs, bootctl or dracut. Layer streams are read as plain
(uncompressed) tar archives. Failures are injected per operation name, e.g.
``fs.fail_on["receive:etc"] = FilesystemError("boom")``.
"""

from __future__ import annotations

import shutil
import tarfile
from pathlib import Path
from typing import Dict, List, Optional, Set

from ..errors import BootRegistrationError, FilesystemError, StratumError


class _FailureInjection:
    def __init__(self) -> None:
        self.fail_on: Dict[str, StratumError] = {}
        self.calls: List[str] = []

    def _hit(self, op: str) -> None:
        self.calls.append(op)
        err = self.fail_on.get(op)
        if err is not None:
            raise err


class InProcessFilesystem(_FailureInjection):
    def __init__(self) -> None:
        super().__init__()
        self.subvolumes: Set[Path] = set()
        self.read_only: Set[Path] = set()
        self.receive_counts: Dict[str, int] = {}

    def _sealed_ancestor(self, path: Path) -> Optional[Path]:
        path = Path(path)
        for sv in self.read_only:
            if path == sv or sv in path.parents:
                # A writable nested subvolume between sv and path breaks the seal.
                inner = [s for s in self.subvolumes if sv in s.parents and (s == path or s in path.parents)]
                if not any(s not in self.read_only for s in inner):
                    return sv
        return None

    def receive(self, stream: Path, parent: Path, name: str) -> Path:
        self._hit(f"receive:{name}")
        parent = Path(parent)
        sealed = self._sealed_ancestor(parent)
        if sealed is not None:
            raise FilesystemError(f"Read-only file system: {sealed}")
        target = parent / name
        if target.exists():
            raise FilesystemError(f"Subvolume already exists: {target}")
        parent.mkdir(parents=True, exist_ok=True)
        target.mkdir()
        try:
            with tarfile.open(stream, mode="r:") as tf:
                tf.extractall(target, filter="data")
        except (tarfile.TarError, OSError) as e:
            shutil.rmtree(target, ignore_errors=True)
            raise FilesystemError(f"Unable to receive {stream}: {e}") from e
        self.subvolumes.add(target)
        self.read_only.add(target)
        self.receive_counts[name] = self.receive_counts.get(name, 0) + 1
        return target

    def set_read_only(self, path: Path, read_only: bool) -> None:
        path = Path(path)
        self._hit(f"set_read_only:{path.name}:{'ro' if read_only else 'rw'}")
        if path not in self.subvolumes:
            raise FilesystemError(f"Not a subvolume: {path}")
        if read_only:
            self.read_only.add(path)
        else:
            self.read_only.discard(path)

    def is_subvolume(self, path: Path) -> bool:
        return Path(path) in self.subvolumes and Path(path).is_dir()

    def list_subvolumes(self, path: Path) -> List[Path]:
        path = Path(path)
        found = [s for s in self.subvolumes if s == path or path in s.parents]
        return sorted(found, key=lambda p: len(p.parts), reverse=True)

    def delete(self, path: Path) -> None:
        path = Path(path)
        self._hit(f"delete:{path.name}")
        for sv in self.list_subvolumes(path):
            self.read_only.discard(sv)
            self.subvolumes.discard(sv)
        if path.exists():
            shutil.rmtree(path)

    def is_read_only(self, path: Path) -> bool:
        return Path(path) in self.read_only


class InProcessBootRegistry(_FailureInjection):
    def __init__(self, entries_dir: Path) -> None:
        super().__init__()
        self.entries_dir = Path(entries_dir)
        self.next_boot: Optional[str] = None

    def entry_path(self, name: str) -> Path:
        return self.entries_dir / f"{name}.conf"

    def write_entry(self, name: str, content: str) -> Path:
        self._hit("write_entry")
        p = self.entry_path(name)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content, encoding="utf-8")
        return p

    def set_next_boot(self, name: str) -> None:
        self._hit("set_next_boot")
        if not self.entry_path(name).exists():
            raise BootRegistrationError(f"No such boot entry: {name}")
        self.next_boot = name

    def remove_entry(self, name: str) -> None:
        self._hit("remove_entry")
        self.entry_path(name).unlink(missing_ok=True)
        if self.next_boot == name:
            self.next_boot = None

    def has_entry(self, name: str) -> bool:
        return self.entry_path(name).exists()


class InProcessInitramfsBuilder(_FailureInjection):
    def generate(self, root: Path, kernel_version: str, output: Path) -> None:
        self._hit("generate")
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(f"initramfs {kernel_version}\n".encode("utf-8"))
