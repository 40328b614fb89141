# globs.py
# Path-style glob matching used by trigger filters, artifact names and upload paths.
#
#   *   any run of characters inside one path segment
#   **  any run of characters, across segments ("a/**" also matches "a")
#   ?   one character that is not "/"
from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern:
    out: List[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if pattern.startswith("/", i):
                    # "**/" may match zero segments
                    i += 1
                    out.append("(?:.*/)?")
                elif out and out[-1] == "/" and i == n:
                    # trailing "/**" also matches the directory itself
                    out[-1] = "(?:/.*)?"
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(c) if c != "/" else "/")
        i += 1
    return re.compile("".join(out) + r"\Z")


def _normalise(path: str) -> str:
    path = path.replace("\\", "/")
    return path[2:] if path.startswith("./") else path


def match(path: str, pattern: str) -> bool:
    return _compile(_normalise(pattern)).match(_normalise(path)) is not None


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    return any(match(path, p) for p in patterns)


def expand(root: Path, pattern: str) -> List[Path]:
    """Files under `root` whose root-relative path matches `pattern`, sorted."""
    root = Path(root)
    direct = root / pattern
    if direct.is_file():
        return [direct]
    out: List[Path] = []
    for p in sorted(root.rglob("*")):
        if p.is_file() and match(p.relative_to(root).as_posix(), pattern):
            out.append(p)
    return out
