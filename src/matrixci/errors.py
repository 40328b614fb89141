# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the /runs API
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(Exception):
    """External action returned non-zero. Aborts the owning job instance only."""
    job: str
    step: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


class ArtifactError(Exception):
    """Base for artifact exchange contract violations."""


class DuplicateNameError(ArtifactError):
    def __init__(self, run_id: str, name: str):
        super().__init__(f"artifact '{name}' already exists in run {run_id}")
        self.run_id = run_id
        self.name = name


class NotFoundError(ArtifactError):
    def __init__(self, run_id: str, pattern: str):
        super().__init__(f"no artifact matching '{pattern}' in run {run_id}")
        self.run_id = run_id
        self.pattern = pattern


class MissingArtifactError(ArtifactError):
    def __init__(self, pattern: str, expected: int, found: int):
        super().__init__(f"expected {expected} artifact(s) matching '{pattern}', found {found}")
        self.pattern = pattern
        self.expected = expected
        self.found = found


class CancellationError(Exception):
    """Raised inside a worker whose run was cancelled. Surfaces as `cancelled`, never as a failure."""


class InvalidTransition(ValueError):
    def __init__(self, instance: str, current: str, target: str):
        super().__init__(f"{instance}: cannot move from {current} to {target}")
        self.instance = instance
        self.current = current
        self.target = target


class ExpressionError(ValueError):
    """Unknown or malformed ${{ ... }} placeholder."""


class UnknownActionError(LookupError):
    pass


class WorkflowError(ValueError):
    """Workflow definition is invalid (duplicate jobs, missing needs, cycles)."""


class ReleaseError(RuntimeError):
    """The release sink refused or failed to create the release."""
