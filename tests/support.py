# support.py
from __future__ import annotations

import threading
from pathlib import Path

from matrixci.matrix import ExpansionContext, expand
from matrixci.model import Event, PipelineRun
from matrixci.shell import CommandResult


class FakeShell:
    """
    Stands in for the OS runners.

    `fail` maps (runner label, command prefix) -> exit code. A release build
    drops the binary a real `cargo build --release` would produce.
    """

    def __init__(self, fail=None, binary: str = "copycat"):
        self.fail = dict(fail or {})
        self.binary = binary
        self.calls = []
        self._lock = threading.Lock()

    def run(self, cmd, *, cwd, env, cancel=None):
        label = env.get("RUNNER_LABEL", "")
        with self._lock:
            self.calls.append((label, env.get("MATRIXCI_JOB", ""), cmd))

        for (runner, prefix), code in self.fail.items():
            if label == runner and cmd.startswith(prefix):
                return CommandResult(code, stderr=f"{cmd}: boom")

        if cmd.startswith("cargo build --release"):
            out = Path(cwd) / "target" / "release"
            out.mkdir(parents=True, exist_ok=True)
            name = self.binary + (".exe" if label.startswith("windows") else "")
            (out / name).write_bytes(f"{name} built on {label}".encode())
        return CommandResult(0, stdout=f"ok: {cmd}")

    def commands(self, label: str, job: str | None = None):
        with self._lock:
            return [c for (l, j, c) in self.calls if l == label and (job is None or j == job)]


def make_run(template, event=None, workflow="CI", env=None):
    """A run holding the expanded instances of one template."""
    event = event or Event.create("push", "refs/heads/main", sha="abc123")
    run = PipelineRun(workflow, event, env=env)
    ctx = ExpansionContext(run_id=run.id, event=event, workflow=workflow, env=run.env)
    run.instances.extend(expand(template, context=ctx))
    return run
