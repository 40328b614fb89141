# model.py
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional

from .errors import InvalidTransition

if TYPE_CHECKING:
    from .conditions import Condition


class Status(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL


TERMINAL = frozenset({Status.SUCCEEDED, Status.FAILED, Status.SKIPPED, Status.CANCELLED})

# pending -> running -> {succeeded|failed}; anything not yet terminal -> cancelled; pending -> skipped
_ALLOWED: Dict[Status, frozenset] = {
    Status.PENDING: frozenset({Status.RUNNING, Status.SKIPPED, Status.CANCELLED}),
    Status.RUNNING: frozenset({Status.SUCCEEDED, Status.FAILED, Status.CANCELLED}),
}


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    TAG = "tag"


TAG_PREFIX = "refs/tags/"
BRANCH_PREFIX = "refs/heads/"


@dataclass(frozen=True)
class Event:
    """An incoming trigger delivered by the source host (or the CLI)."""
    kind: EventKind
    ref: str
    changed_paths: frozenset = frozenset()
    sha: str = ""

    @classmethod
    def create(cls, kind: str, ref: str, changed_paths=None, sha: str = "") -> Event:
        return cls(
            kind=EventKind(kind),
            ref=ref,
            changed_paths=frozenset(changed_paths or ()),
            sha=sha,
        )

    @property
    def is_tag(self) -> bool:
        return self.ref.startswith(TAG_PREFIX)

    @property
    def ref_name(self) -> str:
        """refs/tags/v1.0.0 -> v1.0.0, refs/heads/main -> main."""
        for prefix in (TAG_PREFIX, BRANCH_PREFIX):
            if self.ref.startswith(prefix):
                return self.ref[len(prefix):]
        return self.ref


@dataclass(frozen=True)
class Step:
    """
    A single action inside a job.

    Exactly one of `run` (a shell command) or `uses` (a reusable action,
    e.g. "actions/checkout@v4") is set.
    """
    name: str
    run: str | None = None
    uses: str | None = None
    with_: Dict[str, str] = field(default_factory=dict)
    if_: Optional["Condition"] = None
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if (self.run is None) == (self.uses is None):
            raise ValueError(f"step {self.name!r} needs exactly one of run= or uses=")

    @property
    def action(self) -> str | None:
        """Action name without the version pin."""
        if self.uses is None:
            return None
        return self.uses.split("@", 1)[0]

    @property
    def version(self) -> str | None:
        if self.uses is None or "@" not in self.uses:
            return None
        return self.uses.split("@", 1)[1]


@dataclass
class JobTemplate:
    """
    A declared, unexpanded job: steps + matrix axes + dependencies + run condition.

    `release=True` routes the job through the release gate.
    """
    name: str
    steps: List[Step]
    display_name: str | None = None
    runs_on: str = "ubuntu-latest"
    needs: List[str] = field(default_factory=list)
    matrix: Dict[str, List[str]] = field(default_factory=dict)
    fail_fast: bool = False
    if_: Optional["Condition"] = None
    env: Dict[str, str] = field(default_factory=dict)
    release: bool = False


@dataclass
class StepResult:
    name: str
    status: Status
    exit_code: int | None = None
    output: str = ""
    duration: float = 0.0


class JobInstance:
    """One matrix expansion of a JobTemplate, owned by exactly one PipelineRun."""

    def __init__(
        self,
        run_id: str,
        template: JobTemplate,
        matrix: Mapping[str, str],
        name: str,
        runs_on: str,
        steps: List[Step],
        env: Mapping[str, str] | None = None,
    ):
        self.run_id = run_id
        self.template = template
        self.matrix = dict(matrix)
        self.name = name
        self.runs_on = runs_on
        self.steps = steps
        self.env = dict(env or {})
        self.results: List[StepResult] = []
        self.outputs: Dict[str, object] = {}
        self.error: str | None = None
        self._status = Status.PENDING
        self._lock = threading.Lock()
        self.cancel_token = threading.Event()

    @property
    def id(self) -> str:
        suffix = ",".join(f"{k}={v}" for k, v in self.matrix.items())
        return f"{self.run_id}/{self.template.name}" + (f"[{suffix}]" if suffix else "")

    @property
    def status(self) -> Status:
        return self._status

    @property
    def terminal(self) -> bool:
        return self._status.terminal

    def transition(self, target: Status) -> None:
        with self._lock:
            if target not in _ALLOWED.get(self._status, frozenset()):
                raise InvalidTransition(self.id, self._status.value, target.value)
            self._status = target

    def start(self) -> bool:
        """pending -> running. False if the instance was cancelled first."""
        with self._lock:
            if self._status is Status.CANCELLED:
                return False
            if self._status is not Status.PENDING:
                raise InvalidTransition(self.id, self._status.value, Status.RUNNING.value)
            self._status = Status.RUNNING
            return True

    def skip(self) -> bool:
        """pending -> skipped. False if the instance already left pending."""
        with self._lock:
            if self._status is not Status.PENDING:
                return False
            self._status = Status.SKIPPED
            return True

    def settle(self, target: Status) -> bool:
        """
        Move a running instance to its final status unless it was cancelled
        in the meantime. Returns False when the cancellation won.
        """
        with self._lock:
            if self._status is Status.CANCELLED:
                return False
            if target not in _ALLOWED.get(self._status, frozenset()):
                raise InvalidTransition(self.id, self._status.value, target.value)
            self._status = target
            return True

    def cancel(self) -> bool:
        """Cancel if not terminal yet. In-flight steps stop at their next checkpoint."""
        with self._lock:
            if self._status.terminal:
                return False
            self._status = Status.CANCELLED
        self.cancel_token.set()
        return True

    def __repr__(self) -> str:
        return f"JobInstance({self.id!r}, status={self._status.value})"


class PipelineRun:
    """One execution of the whole workflow, triggered by one event."""

    def __init__(
        self,
        workflow: str,
        event: Event,
        env: Mapping[str, str] | None = None,
        commit: str | None = None,
        run_id: str | None = None,
    ):
        self.id = run_id or uuid.uuid4().hex[:12]
        self.workflow = workflow
        self.event = event
        self.commit = commit or event.sha
        self.created_at = datetime.now(timezone.utc)
        # read-only, set once at run start
        self.env: Mapping[str, str] = MappingProxyType(dict(env or {}))
        self.instances: List[JobInstance] = []
        self.cancelled = threading.Event()
        self.group: str | None = None

    @property
    def ref(self) -> str:
        return self.event.ref

    @property
    def terminal(self) -> bool:
        return all(i.terminal for i in self.instances)

    def instances_of(self, template_name: str) -> List[JobInstance]:
        return [i for i in self.instances if i.template.name == template_name]

    def cancel(self) -> List[JobInstance]:
        """Cancel every unfinished instance. Returns those that were cancelled."""
        self.cancelled.set()
        return [i for i in self.instances if i.cancel()]

    def summary(self) -> Dict[str, str]:
        return {i.name: i.status.value for i in self.instances}

    def __repr__(self) -> str:
        return f"PipelineRun({self.id!r}, ref={self.ref!r})"
