# dsl.py
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Union

from .conditions import Condition
from .model import JobTemplate, Step
from .triggers import PullRequestTrigger, PushTrigger, Triggers
from .workflow import Workflow


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    if_: Condition | None = None,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, if_=if_, cwd=cwd, env=env or {})


def uses(
    action: str,
    name: str | None = None,
    *,
    with_: Optional[Mapping[str, object]] = None,
    if_: Condition | None = None,
) -> Step:
    """
    Create a step that calls a reusable action, e.g.

        uses("actions/upload-artifact@v4", with_={"name": "bin", "path": "target/release/app"})
    """
    params = {k: str(v) for k, v in (with_ or {}).items()}
    return Step(name=name or action, uses=action, with_=params, if_=if_)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Ordered matrix axes.

    Example:
        matrix("os", ["macos-latest", "windows-latest"]).axis("toolchain", ["stable"])
    """
    def __init__(self, key: str, values: Iterable[str]):
        self.axes: Dict[str, List[str]] = {}
        self.axis(key, values)

    def axis(self, key: str, values: Iterable[str]) -> Matrix:
        self.axes[key] = [str(v) for v in values]
        return self


def matrix(key: str, values: Iterable[str]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,
    display_name: str | None = None,
    runs_on: str = "ubuntu-latest",
    needs: Union[str, List[str], None] = None,
    matrix: Union[Matrix, Mapping[str, Iterable[str]], None] = None,
    fail_fast: bool = False,
    if_: Condition | None = None,
    env: Optional[Dict[str, str]] = None,
    release: bool = False,
) -> JobTemplate:
    if not steps:
        raise ValueError(f"job({name!r}) must have at least one step")

    if isinstance(needs, str):
        needs = [needs]

    if isinstance(matrix, Matrix):
        axes = dict(matrix.axes)
    else:
        axes = {k: [str(v) for v in vals] for k, vals in (matrix or {}).items()}

    return JobTemplate(
        name=name,
        steps=list(steps),
        display_name=display_name,
        runs_on=runs_on,
        needs=list(needs or []),
        matrix=axes,
        fail_fast=fail_fast,
        if_=if_,
        env=env or {},
        release=release,
    )


# ---------------------------------------------------------------------
# Triggers + workflow
# ---------------------------------------------------------------------

def push(branches: Optional[List[str]] = None, tags: Optional[List[str]] = None) -> PushTrigger:
    return PushTrigger(branches=branches, tags=tags)


def pull_request(paths: Optional[List[str]] = None) -> PullRequestTrigger:
    return PullRequestTrigger(paths=list(paths or []))


def on(push: PushTrigger | None = None, pull_request: PullRequestTrigger | None = None) -> Triggers:
    return Triggers(push=push, pull_request=pull_request)


def wf(
    name: str,
    *jobs: JobTemplate,
    on: Triggers,
    env: Optional[Dict[str, str]] = None,
) -> Workflow:
    """
    Workflow definition helper:

        from matrixci.dsl import wf, job, sh, on, push

        def workflow():
            return wf("CI", job(...), job(...), on=on(push=push()))
    """
    return Workflow(name=name, on=on, jobs=list(jobs), env=dict(env or {}))
