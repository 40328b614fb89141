# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional


class GitError(RuntimeError):
    def __init__(self, args: list[str], returncode: int, stderr: str):
        super().__init__(f"git {' '.join(args)} failed (exit={returncode}): {stderr.strip()}")
        self.returncode = returncode


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        GitError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    proc = subprocess.run(["git", *args], cwd=cwd, text=True, capture_output=True)
    if proc.returncode != 0:
        raise GitError(args, proc.returncode, proc.stderr)
    # Strip trailing newlines so callers can do clean string comparisons
    return proc.stdout.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of HEAD. Used as the run's commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_ref(cwd: Optional[str] = None) -> str:
    """
    The ref a push of the current checkout would carry:
    refs/tags/<tag> when HEAD is exactly at a tag, refs/heads/<branch> otherwise,
    the bare SHA for a detached HEAD.
    """
    try:
        return "refs/tags/" + _git(["describe", "--tags", "--exact-match", "HEAD"], cwd=cwd)
    except GitError:
        pass
    try:
        return _git(["symbolic-ref", "HEAD"], cwd=cwd)
    except GitError:
        return head_sha(cwd=cwd)


def get_remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def changed_files(base: str, head: str = "HEAD", cwd: Optional[str] = None) -> List[str]:
    """
    Files changed between two refs, relative to the repository root.

    Typical usage:
        base = merge_base("origin/main")
        files = changed_files(base)
    """
    out = _git(["diff", "--name-only", f"{base}..{head}"], cwd=cwd)
    if not out:
        return []
    return out.splitlines()


def merge_base(with_ref: str = "origin/main", cwd: Optional[str] = None) -> str:
    """Common ancestor of HEAD and `with_ref`: where a pull request's changes start."""
    return _git(["merge-base", "HEAD", with_ref], cwd=cwd)


def clone(url: str, dest: Path, ref: Optional[str] = None) -> Path:
    """Clone `url` into `dest` and check out `ref` (branch, tag, ref or SHA)."""
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    _git(["clone", "--quiet", url, str(dest)])
    if ref:
        if ref.startswith("refs/"):
            _git(["fetch", "--quiet", "origin", f"{ref}:{ref}"], cwd=str(dest))
        _git(["checkout", "--quiet", ref], cwd=str(dest))
    return dest
