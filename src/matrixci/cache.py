# cache.py
from __future__ import annotations

import hashlib
import io
import json
import subprocess
import tarfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from . import globs

# ---------------------------------------------------------------------
# Dependency cache
# ---------------------------------------------------------------------
# key = <prefix>-<job>-<axis values>-<digest>, where digest covers
#   job name, matrix values (one cache per OS), the manifest files
#   (Cargo.toml / Cargo.lock), toolchain versions and optional extra salt.
#
# Entry on disk: <key>.tar.gz holding the cached paths, with the key
# manifest stored next to it and inside the archive.
#
# Restore and save are best-effort: a miss, or a restore that blows up,
# degrades to a full rebuild and never fails the job.
# Concurrent savers of the same key: tmp file + atomic rename, last writer wins.
# ---------------------------------------------------------------------

KEY_FORMAT = 1

EXCLUDES = (".git/**", ".matrixci/**", "**/.DS_Store")


@dataclass(frozen=True)
class CacheSpec:
    """What to cache and what the key depends on."""
    job: str
    matrix: Mapping[str, str] = field(default_factory=dict)
    paths: Tuple[str, ...] = ("target",)
    key_files: Tuple[str, ...] = ("Cargo.toml", "Cargo.lock", "**/Cargo.toml")
    tools: Tuple[str, ...] = ()
    prefix: str = "v0-matrixci"
    extra: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str
    manifest: Dict


def _file_digest(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as fh:
        for block in iter(lambda: fh.read(1 << 20), b""):
            h.update(block)
    return h.hexdigest()


def _posix_rel(path: Path, root: Path) -> str:
    return path.resolve().relative_to(root).as_posix()


def _excluded(rel: str) -> bool:
    return globs.matches_any(rel, EXCLUDES)


def _key_files(root: Path, patterns: Iterable[str]) -> List[Path]:
    """Manifest files named by `patterns` (plain paths or globs), each once."""
    seen: Dict[Path, None] = {}
    for pattern in patterns:
        if pattern.strip():
            for p in globs.expand(root, pattern.strip()):
                seen.setdefault(p.resolve(), None)
    return list(seen)


def _cached_files(root: Path, paths: Iterable[str]) -> Iterator[Tuple[Path, str]]:
    for entry in paths:
        src = (root / entry).resolve()
        if not src.exists():
            continue
        candidates = [src] if src.is_file() else sorted(p for p in src.rglob("*") if p.is_file())
        for f in candidates:
            rel = _posix_rel(f, root)
            if not _excluded(rel):
                yield f, rel


def _tool_version(tool: str) -> Optional[str]:
    """`<tool> --version` (or `-V`), whitespace-normalised. None if the tool is absent."""
    for flag in ("--version", "-V"):
        try:
            proc = subprocess.run([tool, flag], text=True, capture_output=True, check=False)
        except OSError:
            return None
        text = (proc.stdout or proc.stderr or "").strip()
        if proc.returncode == 0 and text:
            return " ".join(text.split())
    return None


def compute_cache_key(spec: CacheSpec, *, workspace: str | Path = ".") -> Tuple[str, Dict]:
    """
    Returns (key, manifest). The manifest records every input of the key so
    a miss can be explained.
    """
    root = Path(workspace).resolve()

    files = sorted(
        (rel, _file_digest(p))
        for p in _key_files(root, spec.key_files)
        for rel in [_posix_rel(p, root)]
        if not _excluded(rel)
    )
    payload = {
        "v": KEY_FORMAT,
        "job": spec.job,
        "matrix": dict(spec.matrix),
        "paths": list(spec.paths),
        "files": files,
        "tools": {t: _tool_version(t) for t in spec.tools},
        "extra": dict(spec.extra),
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:20]

    parts = [spec.prefix, spec.job, "-".join(spec.matrix.values()), digest]
    key = "-".join(p for p in parts if p)
    return key, {"key": key, "payload": payload, "created": int(time.time())}


class CacheStore:
    """
    root/
      <key>.tar.gz
      <key>.manifest.json
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def artifact_path(self, key: str) -> Path:
        return self.root / f"{key}.tar.gz"

    def manifest_path(self, key: str) -> Path:
        return self.root / f"{key}.manifest.json"

    def restore(self, spec: CacheSpec, *, workspace: str | Path = ".") -> CacheHit:
        """
        Unpack the entry for this spec into the workspace.

        Never raises for cache problems: a missing entry is a miss, a broken
        one is reported as a miss with the reason.
        """
        root = Path(workspace).resolve()
        try:
            key, manifest = compute_cache_key(spec, workspace=root)
        except OSError as e:
            return CacheHit(False, "", f"cache key failed: {e}", {})

        archive = self.artifact_path(key)
        if not archive.exists():
            return CacheHit(False, key, "cache miss", manifest)

        try:
            with tarfile.open(archive, mode="r:gz") as tar:
                tar.extractall(path=root, filter="data")
        except (OSError, tarfile.TarError) as e:
            return CacheHit(False, key, f"cache exists but restore failed: {e}", manifest)

        try:
            stored = json.loads(self.manifest_path(key).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            stored = manifest
        return CacheHit(True, key, "cache hit: restored", stored)

    def save(self, spec: CacheSpec, *, workspace: str | Path = ".", key: Optional[str] = None) -> Tuple[str, Dict]:
        """
        Archive the spec's paths under `key` (default: the computed key).
        Missing paths are skipped. Returns (key, manifest).
        """
        root = Path(workspace).resolve()
        computed, manifest = compute_cache_key(spec, workspace=root)
        key = key or computed
        manifest_bytes = json.dumps(manifest, sort_keys=True, indent=2).encode("utf-8")

        partial = self.root / f"{key}.{time.monotonic_ns()}.tmp"
        try:
            with tarfile.open(partial, mode="w:gz") as tar:
                for f, rel in _cached_files(root, spec.paths):
                    tar.add(f, arcname=rel, recursive=False)
                info = tarfile.TarInfo(name=f".matrixci_cache_manifest/{key}.json")
                info.size = len(manifest_bytes)
                info.mtime = int(time.time())
                tar.addfile(info, io.BytesIO(manifest_bytes))
            partial.replace(self.artifact_path(key))
            self.manifest_path(key).write_bytes(manifest_bytes)
        finally:
            partial.unlink(missing_ok=True)

        return key, manifest

    def prune(self, keep: int = 10) -> None:
        """Drop all but the `keep` most recently written entries."""
        archives = sorted(self.root.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        for archive in archives[keep:]:
            key = archive.name[: -len(".tar.gz")]
            archive.unlink(missing_ok=True)
            self.manifest_path(key).unlink(missing_ok=True)
