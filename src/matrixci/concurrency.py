# concurrency.py
# "Latest run wins" per cancellation group.
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from .model import PipelineRun

if TYPE_CHECKING:
    from .artifacts import ArtifactExchange


def group_key(ref: str, pipeline: str) -> str:
    return f"{ref}-{pipeline}"


@dataclass(frozen=True)
class AdmissionResult:
    group: str
    cancelled_run_id: Optional[str] = None


class ConcurrencyGovernor:
    """
    Registry of the active run per group key (ref + pipeline name).

    All bookkeeping happens under one lock. Admitting a run cancels the
    previous active run of its group before the new one is registered, so a
    group never has two unfinished runs.
    """

    def __init__(
        self,
        exchange: Optional["ArtifactExchange"] = None,
        on_cancel: Optional[Callable[[PipelineRun], None]] = None,
    ):
        self._lock = threading.Lock()
        self._active: Dict[str, PipelineRun] = {}
        self._exchange = exchange
        self._on_cancel = on_cancel

    def admit(self, run: PipelineRun) -> AdmissionResult:
        key = group_key(run.ref, run.workflow)
        cancelled: Optional[PipelineRun] = None

        with self._lock:
            previous = self._active.get(key)
            if previous is not None and previous is not run:
                if not previous.terminal:
                    previous.cancel()
                    if self._exchange is not None:
                        self._exchange.discard(previous.id)
                    cancelled = previous
                previous.group = None
            run.group = key
            self._active[key] = run

        if cancelled is not None and self._on_cancel is not None:
            self._on_cancel(cancelled)
        return AdmissionResult(group=key, cancelled_run_id=cancelled.id if cancelled else None)

    def release(self, run: PipelineRun) -> bool:
        """Detach a finished run, unless a newer one already took its place."""
        with self._lock:
            key = run.group
            if key is None or self._active.get(key) is not run:
                return False
            del self._active[key]
            run.group = None
            return True

    def cancel(self, run_id: str) -> Optional[PipelineRun]:
        with self._lock:
            for key, run in self._active.items():
                if run.id == run_id:
                    run.cancel()
                    if self._exchange is not None:
                        self._exchange.discard(run.id)
                    return run
        return None

    def active(self, key: str) -> Optional[PipelineRun]:
        with self._lock:
            return self._active.get(key)

    def groups(self) -> List[str]:
        with self._lock:
            return sorted(self._active)
