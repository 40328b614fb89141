# actions.py
# Reusable step actions ("uses: owner/name@version").
from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from . import globs
from .artifacts import ArtifactExchange
from .cache import CacheSpec, CacheStore
from .errors import CIError, MissingArtifactError, ReleaseError, StepFailure, UnknownActionError
from .git_facts import git
from .model import JobInstance, PipelineRun, Step
from .release import ReleaseSink, tag_name

if TYPE_CHECKING:
    from .ui.console import Console


@dataclass
class StepContext:
    """What an action can see and touch while it runs."""
    instance: JobInstance
    run: PipelineRun
    step: Step
    workspace: Path
    exchange: ArtifactExchange
    console: "Console"
    cache: Optional[CacheStore] = None
    release_sink: Optional[ReleaseSink] = None
    repo_url: Optional[str] = None
    # run after the last step, only when the job succeeded
    post: List[Callable[[], None]] = field(default_factory=list)

    def param(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.step.with_.get(key, default)

    def require(self, key: str) -> str:
        value = self.step.with_.get(key)
        if value is None or value == "":
            raise CIError(
                kind="InvalidInput",
                job=self.instance.name,
                step=self.step.name,
                message=f"input '{key}' is required by {self.step.uses}",
            )
        return value


Action = Callable[[StepContext], None]


class ActionRegistry:
    def __init__(self) -> None:
        self._actions: Dict[str, Action] = {}

    def register(self, name: str) -> Callable[[Action], Action]:
        def deco(fn: Action) -> Action:
            self._actions[name] = fn
            return fn

        return deco

    def add(self, name: str, fn: Action) -> None:
        self._actions[name] = fn

    def get(self, name: str) -> Action:
        try:
            return self._actions[name]
        except KeyError:
            raise UnknownActionError(f"unknown action '{name}'. Known: {sorted(self._actions)}") from None

    def __contains__(self, name: str) -> bool:
        return name in self._actions

    def copy(self) -> ActionRegistry:
        r = ActionRegistry()
        r._actions = dict(self._actions)
        return r


builtin = ActionRegistry()


# ---------------------------------------------------------------------
# actions/checkout
# ---------------------------------------------------------------------

@builtin.register("actions/checkout")
def checkout(ctx: StepContext) -> None:
    ws = ctx.workspace
    if (ws / ".git").exists():
        try:
            sha = git.head_sha(cwd=str(ws))
        except (OSError, git.GitError):
            sha = "unknown"
        ctx.console.print_debug(f"[{ctx.instance.name}] using checkout at {ws} ({sha[:12]})")
        return

    if ctx.repo_url:
        ref = ctx.param("ref") or ctx.run.commit or ctx.run.ref
        try:
            git.clone(ctx.repo_url, ws, ref=ref)
        except git.GitError as e:
            raise StepFailure(
                job=ctx.instance.name,
                step=ctx.step.name,
                cmd=f"git clone {ctx.repo_url}",
                exit_code=e.returncode,
                stderr=str(e),
            ) from e
        return

    ctx.console.print_debug(f"[{ctx.instance.name}] {ws} is not a git checkout; using files as-is")


# ---------------------------------------------------------------------
# Swatinem/rust-cache
# ---------------------------------------------------------------------

@builtin.register("Swatinem/rust-cache")
def rust_cache(ctx: StepContext) -> None:
    """Restore now, save after the job succeeds. Never fails the job."""
    if ctx.cache is None:
        ctx.console.print_info(f"[{ctx.instance.name}] cache: disabled")
        return

    dirs = ctx.param("cache-directories")
    spec = CacheSpec(
        job=ctx.instance.template.name,
        matrix=ctx.instance.matrix,
        paths=tuple(d.strip() for d in dirs.split(",") if d.strip()) if dirs else ("target",),
        tools=("rustc", "cargo"),
        prefix=ctx.param("prefix-key") or "v0-matrixci",
    )
    cache = ctx.cache
    hit = cache.restore(spec, workspace=ctx.workspace)
    ctx.console.print_cache(ctx.instance.name, hit.reason)

    if hit.hit:
        return

    def save() -> None:
        try:
            key, _manifest = cache.save(spec, workspace=ctx.workspace, key=hit.key or None)
            cache.prune(keep=int(ctx.param("keep", "10")))
            ctx.console.print_cache_saved(ctx.instance.name, key)
        except OSError as e:
            ctx.console.print_info(f"[{ctx.instance.name}] cache: save failed ({e})")

    ctx.post.append(save)


# ---------------------------------------------------------------------
# actions/upload-artifact
# ---------------------------------------------------------------------

@builtin.register("actions/upload-artifact")
def upload_artifact(ctx: StepContext) -> None:
    name = ctx.param("name", "artifact")
    path = ctx.require("path")
    if_missing = ctx.param("if-no-files-found", "warn")

    files = globs.expand(ctx.workspace, path)
    if not files:
        msg = f"no files found at '{path}'; nothing uploaded for '{name}'"
        if if_missing == "error":
            raise MissingArtifactError(path, 1, 0)
        if if_missing == "warn":
            ctx.console.print_info(f"[{ctx.instance.name}] warning: {msg}")
        return
    if len(files) > 1:
        raise CIError(
            kind="InvalidInput",
            job=ctx.instance.name,
            step=ctx.step.name,
            message=f"'{path}' matched {len(files)} files; one artifact holds one file",
            details={"files": ", ".join(f.name for f in files[:5])},
        )

    f = files[0]
    entry = ctx.exchange.publish(ctx.run.id, name, f.read_bytes(), ctx.instance.id, filename=f.name)
    ctx.console.print_info(f"[{ctx.instance.name}] uploaded '{name}' ({entry.size} bytes)")


# ---------------------------------------------------------------------
# actions/download-artifact
# ---------------------------------------------------------------------

@builtin.register("actions/download-artifact")
def download_artifact(ctx: StepContext) -> None:
    """
    Inputs:
      name:    one artifact (must exist)
      pattern: glob over artifact names (default: all)
      path:    destination directory, each artifact lands in <path>/<name>/
      expect:  minimum number of artifacts, else MissingArtifactError
    """
    name = ctx.param("name")
    pattern = name or ctx.param("pattern", "**")
    dest = ctx.workspace / (ctx.param("path") or ".")

    entries = ctx.exchange.fetch(ctx.run.id, pattern, require=bool(name))
    expect = ctx.param("expect")
    if expect is not None and len(entries) < int(expect):
        raise MissingArtifactError(pattern, int(expect), len(entries))

    written = []
    for e in entries:
        # <path>/<name>/ holds exactly what this run uploaded
        shutil.rmtree(dest / e.name, ignore_errors=True)
        target = dest / e.name / (e.filename or Path(e.name).name)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(e.payload)
        written.append(target.resolve())
    ctx.instance.outputs.setdefault("downloaded", []).extend(e.name for e in entries)
    ctx.instance.outputs.setdefault("downloaded_files", []).extend(written)
    ctx.console.print_info(f"[{ctx.instance.name}] downloaded {len(entries)} artifact(s) to {dest}")


# ---------------------------------------------------------------------
# ncipollo/release-action
# ---------------------------------------------------------------------

@builtin.register("ncipollo/release-action")
def create_release(ctx: StepContext) -> None:
    if ctx.release_sink is None:
        raise ReleaseError("no release sink configured")

    tag = tag_name(ctx.param("tag") or ctx.run.ref)
    patterns = [p.strip() for p in (ctx.param("files") or ctx.param("artifacts") or "").split(",") if p.strip()]
    files: List[Path] = []
    for p in patterns:
        files.extend(f for f in globs.expand(ctx.workspace, p) if f not in files)

    # once this job downloaded artifacts, only those files can be released
    downloaded = ctx.instance.outputs.get("downloaded_files")
    if downloaded is not None:
        allowed = set(downloaded)
        files = [f for f in files if f.resolve() in allowed]

    if not ctx.release_sink.create_release(tag, files):
        raise ReleaseError(f"release {tag} was not created")

    ctx.instance.outputs["release"] = {"tag": tag, "assets": [f.name for f in files]}
    ctx.console.print_info(f"[{ctx.instance.name}] released {tag} with {len(files)} asset(s)")
