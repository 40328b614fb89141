# triggers.py
# Decides, per incoming event, whether a pipeline run starts and which jobs it instantiates.
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from . import globs
from .model import BRANCH_PREFIX, TAG_PREFIX, Event, EventKind, JobTemplate

if TYPE_CHECKING:
    from .workflow import Workflow


@dataclass(frozen=True)
class PushTrigger:
    """
    Run on pushes. Without filters every ref is accepted.
    With `branches` and/or `tags`, only refs matching one of the globs are.
    """
    branches: Optional[List[str]] = None
    tags: Optional[List[str]] = None

    def accepts(self, event: Event) -> bool:
        if self.branches is None and self.tags is None:
            return True
        if event.ref.startswith(TAG_PREFIX):
            return self.tags is not None and globs.matches_any(event.ref_name, self.tags)
        if self.branches is None:
            return False
        name = event.ref[len(BRANCH_PREFIX):] if event.ref.startswith(BRANCH_PREFIX) else event.ref
        return globs.matches_any(name, self.branches)


@dataclass(frozen=True)
class PullRequestTrigger:
    """Run on pull requests whose changed paths hit at least one of `paths`."""
    paths: List[str] = field(default_factory=list)

    def accepts(self, event: Event) -> bool:
        if not self.paths:
            return True
        return any(globs.matches_any(p, self.paths) for p in event.changed_paths)


@dataclass(frozen=True)
class Triggers:
    push: Optional[PushTrigger] = None
    pull_request: Optional[PullRequestTrigger] = None


@dataclass
class TriggerDecision:
    accepted: bool
    event: Event
    templates: List[JobTemplate] = field(default_factory=list)
    reason: str = ""


def normalise(event: Event) -> Event:
    """Tag events are pushes of refs/tags/<name>."""
    if event.kind is not EventKind.TAG:
        return event
    ref = event.ref if event.ref.startswith(TAG_PREFIX) else TAG_PREFIX + event.ref
    return Event(kind=EventKind.PUSH, ref=ref, changed_paths=event.changed_paths, sha=event.sha)


def evaluate(workflow: "Workflow", event: Event) -> TriggerDecision:
    """
    Returns whether `event` starts a run of `workflow`.

    Rejection is a no-op, never a failure. When accepted every template is
    instantiated; jobs with a run condition (the release job) are decided
    later, when their upstream jobs have finished.
    """
    event = normalise(event)
    on = workflow.on

    if event.kind is EventKind.PUSH:
        if on.push is None:
            return TriggerDecision(False, event, reason="workflow has no push trigger")
        if not on.push.accepts(event):
            return TriggerDecision(False, event, reason=f"push to {event.ref} filtered out")
        return TriggerDecision(True, event, list(workflow.jobs), reason=f"push to {event.ref}")

    if event.kind is EventKind.PULL_REQUEST:
        if on.pull_request is None:
            return TriggerDecision(False, event, reason="workflow has no pull_request trigger")
        if not on.pull_request.accepts(event):
            return TriggerDecision(
                False,
                event,
                reason=f"no changed path matches {on.pull_request.paths}",
            )
        return TriggerDecision(True, event, list(workflow.jobs), reason="pull request touches filtered paths")

    return TriggerDecision(False, event, reason=f"unsupported event {event.kind.value}")
