# artifacts.py
# Write-once, run-scoped artifact exchange between job instances.
from __future__ import annotations

import json
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Set

from . import globs
from .errors import CancellationError, DuplicateNameError, NotFoundError


@dataclass(frozen=True)
class ArtifactEntry:
    run_id: str
    name: str
    payload: bytes
    producer: str
    filename: str = ""

    @property
    def size(self) -> int:
        return len(self.payload)


class ArtifactSink(Protocol):
    """Storage backend, addressed per pipeline run."""

    def store(self, run_id: str, entry: ArtifactEntry) -> None: ...

    def retrieve(self, run_id: str, pattern: str) -> List[ArtifactEntry]: ...

    def drop(self, run_id: str) -> None: ...


class MemorySink:
    def __init__(self) -> None:
        self._runs: Dict[str, Dict[str, ArtifactEntry]] = {}

    def store(self, run_id: str, entry: ArtifactEntry) -> None:
        self._runs.setdefault(run_id, {})[entry.name] = entry

    def retrieve(self, run_id: str, pattern: str) -> List[ArtifactEntry]:
        entries = self._runs.get(run_id, {})
        return [entries[n] for n in sorted(entries) if globs.match(n, pattern)]

    def drop(self, run_id: str) -> None:
        self._runs.pop(run_id, None)


class DirectorySink:
    """
    File-based sink:
      root/
        <run_id>/
          <name>/
            <filename>
            .artifact.json
    """

    META = ".artifact.json"

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _dir(self, run_id: str, name: str) -> Path:
        return self.root / run_id / name

    def store(self, run_id: str, entry: ArtifactEntry) -> None:
        d = self._dir(run_id, entry.name)
        d.mkdir(parents=True, exist_ok=True)
        filename = entry.filename or entry.name.replace("/", "_")
        tmp = d / f"{filename}.tmp"
        tmp.write_bytes(entry.payload)
        tmp.replace(d / filename)
        meta = {"name": entry.name, "producer": entry.producer, "filename": filename}
        (d / self.META).write_text(json.dumps(meta, sort_keys=True), encoding="utf-8")

    def retrieve(self, run_id: str, pattern: str) -> List[ArtifactEntry]:
        run_dir = self.root / run_id
        if not run_dir.exists():
            return []
        out: List[ArtifactEntry] = []
        for meta_path in sorted(run_dir.rglob(self.META)):
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
            if not globs.match(meta["name"], pattern):
                continue
            payload = (meta_path.parent / meta["filename"]).read_bytes()
            out.append(ArtifactEntry(run_id, meta["name"], payload, meta["producer"], meta["filename"]))
        return sorted(out, key=lambda e: e.name)

    def drop(self, run_id: str) -> None:
        shutil.rmtree(self.root / run_id, ignore_errors=True)


class ArtifactExchange:
    """
    Named blobs published by job instances and fetched by downstream jobs.

    Names are write-once per run; publishing distinct names concurrently is
    safe. A discarded (cancelled) run is sealed: its entries are dropped and
    later publishes raise CancellationError.
    """

    def __init__(self, sink: Optional[ArtifactSink] = None):
        self.sink: ArtifactSink = sink if sink is not None else MemorySink()
        self._lock = threading.Lock()
        self._names: Dict[str, Set[str]] = {}
        self._sealed: Set[str] = set()

    def publish(
        self,
        run_id: str,
        name: str,
        payload: bytes,
        producer: str,
        filename: str = "",
    ) -> ArtifactEntry:
        entry = ArtifactEntry(run_id, name, bytes(payload), producer, filename)
        with self._lock:
            if run_id in self._sealed:
                raise CancellationError(f"run {run_id} was cancelled; '{name}' not stored")
            names = self._names.setdefault(run_id, set())
            if name in names:
                raise DuplicateNameError(run_id, name)
            self.sink.store(run_id, entry)
            names.add(name)
        return entry

    def fetch(self, run_id: str, pattern: str = "**", *, require: bool = False) -> List[ArtifactEntry]:
        with self._lock:
            if run_id in self._sealed:
                entries: List[ArtifactEntry] = []
            else:
                entries = self.sink.retrieve(run_id, pattern)
        if require and not entries:
            raise NotFoundError(run_id, pattern)
        return entries

    def names(self, run_id: str) -> List[str]:
        with self._lock:
            return sorted(self._names.get(run_id, ()))

    def forget(self, run_id: str) -> None:
        """Drop everything held for a finished run, including its seal."""
        with self._lock:
            self._sealed.discard(run_id)
            self._names.pop(run_id, None)
            self.sink.drop(run_id)

    def discard(self, run_id: str) -> None:
        with self._lock:
            self._sealed.add(run_id)
            self._names.pop(run_id, None)
            self.sink.drop(run_id)

