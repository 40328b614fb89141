# release.py
# Release gate: a job that only runs for tag refs once every upstream
# instance succeeded, and whose effect (a published release) is all-or-nothing.
from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, List, Protocol, Sequence

from .conditions import Condition, ConditionContext, NeedsSucceeded, tag_ref
from .model import TAG_PREFIX, JobInstance, PipelineRun, Status

if TYPE_CHECKING:
    from .executor import JobExecutor


class ReleaseSink(Protocol):
    """External release-publishing service."""

    def create_release(self, tag: str, files: Sequence[Path]) -> bool: ...


class DirectoryReleaseSink:
    """
    Publishes releases into a local directory:
      root/
        <tag>/
          <asset files>
    An existing tag is refused, like a hosted release would be.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def create_release(self, tag: str, files: Sequence[Path]) -> bool:
        dest = self.root / tag
        if dest.exists():
            return False
        tmp = self.root / f".{tag}.partial"
        shutil.rmtree(tmp, ignore_errors=True)
        tmp.mkdir(parents=True)
        try:
            for f in files:
                shutil.copy2(f, tmp / Path(f).name)
            tmp.rename(dest)
        except OSError:
            shutil.rmtree(tmp, ignore_errors=True)
            return False
        return True


def tag_name(ref: str) -> str:
    """refs/tags/v1.0.0 -> v1.0.0"""
    return ref[len(TAG_PREFIX):] if ref.startswith(TAG_PREFIX) else ref


class ReleaseState(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    EVALUATING = "evaluating"
    PUBLISHED = "published"
    FAILED = "failed"


@dataclass
class GateOutcome:
    state: ReleaseState
    reason: str = ""
    tag: str | None = None
    assets: List[str] = field(default_factory=list)


def needs_context(instance: JobInstance, run: PipelineRun) -> ConditionContext:
    needs = {
        name: [i.status for i in run.instances_of(name)]
        for name in instance.template.needs
    }
    return ConditionContext(event=run.event, matrix=instance.matrix, needs=needs, workflow=run.workflow)


class ReleaseGate:
    """
    pending -> {skipped | evaluating} -> {published | failed}

    The predicate is the job's own run condition (default: a refs/tags/* ref)
    AND every instance of each `needs` job succeeded. When it holds the job's
    steps run: the download step fetches the build artifacts (raising
    MissingArtifactError when too few exist) and the release step hands them
    to the release sink.
    """

    def __init__(self, executor: "JobExecutor", default_condition: Condition | None = None):
        self.executor = executor
        self.default_condition = default_condition or tag_ref()

    def predicate(self, instance: JobInstance) -> Condition:
        cond = instance.template.if_ or self.default_condition
        return cond & NeedsSucceeded(tuple(instance.template.needs))

    def run(self, instance: JobInstance, run: PipelineRun) -> GateOutcome:
        console = self.executor.console
        ctx = needs_context(instance, run)
        cond = self.predicate(instance)

        if instance.status is Status.CANCELLED:
            outcome = GateOutcome(ReleaseState.PENDING, reason="run cancelled before evaluation")
            instance.outputs["gate"] = outcome
            return outcome

        if not cond.evaluate(ctx):
            if not instance.skip():
                outcome = GateOutcome(ReleaseState.PENDING, reason=f"instance already {instance.status.value}")
                instance.outputs["gate"] = outcome
                return outcome
            outcome = GateOutcome(ReleaseState.SKIPPED, reason=f"condition false: {cond}")
            instance.outputs["gate"] = outcome
            console.print_job_skipped(instance.name, outcome.reason)
            return outcome

        instance.outputs["gate"] = GateOutcome(ReleaseState.EVALUATING, tag=tag_name(run.ref))
        status = self.executor.run(instance, run)

        release = instance.outputs.get("release")
        if status is Status.CANCELLED and release is None:
            # superseded before anything was published
            outcome = GateOutcome(ReleaseState.PENDING, reason="run cancelled during release", tag=tag_name(run.ref))
        elif release is not None and status is not Status.FAILED:
            outcome = GateOutcome(
                ReleaseState.PUBLISHED,
                reason="release created",
                tag=release["tag"],
                assets=list(release["assets"]),
            )
        else:
            reason = instance.error or f"job ended {status.value}"
            if status is Status.SUCCEEDED:
                reason = "job succeeded without creating a release"
            outcome = GateOutcome(ReleaseState.FAILED, reason=reason, tag=tag_name(run.ref))
        instance.outputs["gate"] = outcome
        return outcome


def release_outcome(run: PipelineRun) -> GateOutcome | None:
    """The gate outcome of the run's release job, if it has one."""
    for instance in run.instances:
        if instance.template.release:
            return instance.outputs.get("gate") or GateOutcome(ReleaseState.PENDING)
    return None
