# runner.py
from __future__ import annotations

import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .actions import ActionRegistry
from .artifacts import ArtifactExchange
from .cache import CacheStore
from .concurrency import AdmissionResult, ConcurrencyGovernor
from .dag import build_dag
from .executor import JobExecutor
from .matrix import ExpansionContext, expand
from .model import Event, JobInstance, JobTemplate, PipelineRun, Status
from .release import ReleaseGate, ReleaseSink, needs_context
from .shell import CommandRunner
from .triggers import TriggerDecision, evaluate
from .ui.console import Console, get_console
from .workflow import Workflow, validate_workflow


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(2, c - 1)


class Pipeline:
    """
    Control plane for one workflow:

      event -> trigger evaluation -> run admission (cancels the previous run
      of the same ref) -> matrix expansion -> parallel job instances, gated
      by `needs` -> release gate

    A run's outcome is the set of its instance statuses; there is no
    pipeline-level failure.
    """

    def __init__(
        self,
        workflow: Workflow,
        *,
        workspace: str | Path = ".",
        exchange: Optional[ArtifactExchange] = None,
        governor: Optional[ConcurrencyGovernor] = None,
        shell: Optional[CommandRunner] = None,
        cache: Optional[CacheStore] = None,
        release_sink: Optional[ReleaseSink] = None,
        registry: Optional[ActionRegistry] = None,
        console: Optional[Console] = None,
        max_workers: Optional[int] = None,
        repo_url: Optional[str] = None,
        keep_runs: int = 100,
    ):
        validate_workflow(workflow)
        self.workflow = workflow
        self.console = console or get_console()
        self.exchange = exchange or ArtifactExchange()
        self.governor = governor or ConcurrencyGovernor(self.exchange, on_cancel=self._on_cancel)
        self.executor = JobExecutor(
            workspace,
            self.exchange,
            shell=shell,
            cache=cache,
            release_sink=release_sink,
            registry=registry,
            console=self.console,
            repo_url=repo_url,
        )
        self.gate = ReleaseGate(self.executor)
        self.max_workers = max_workers or default_workers()
        self.runs: Dict[str, PipelineRun] = {}
        self._runs_lock = threading.Lock()
        self.keep_runs = keep_runs

    # ------------------------------------------------------------------
    # Planning / admission
    # ------------------------------------------------------------------

    def plan(self, event: Event, commit: Optional[str] = None) -> Tuple[TriggerDecision, Optional[PipelineRun]]:
        """Evaluate the trigger and expand the jobs, without admitting or running anything."""
        decision = evaluate(self.workflow, event)
        if not decision.accepted:
            return decision, None

        run = PipelineRun(self.workflow.name, decision.event, env=self.workflow.env, commit=commit)
        ctx = ExpansionContext(
            run_id=run.id,
            event=run.event,
            workflow=self.workflow.name,
            env=run.env,
            sha=run.commit or "",
        )
        for template in decision.templates:
            run.instances.extend(expand(template, context=ctx))
        return decision, run

    def start(self, event: Event, commit: Optional[str] = None) -> Tuple[Optional[PipelineRun], Optional[AdmissionResult]]:
        """Plan and admit a run. Returns (None, None) when the event is rejected."""
        decision, run = self.plan(event, commit=commit)
        if run is None:
            self.console.print_trigger_rejected(event.kind.value, event.ref, decision.reason)
            return None, None

        with self._runs_lock:
            self.runs[run.id] = run
        admission = self.governor.admit(run)
        if admission.cancelled_run_id:
            self.console.print_run_cancelled(admission.cancelled_run_id, by=run.id)
        self.console.print_run_started(
            run_id=run.id,
            workflow=run.workflow,
            ref=run.ref,
            event=run.event.kind.value,
            job_count=len(run.instances),
        )
        return run, admission

    def trigger(self, event: Event, commit: Optional[str] = None) -> Optional[PipelineRun]:
        """Start and execute a run to completion. None when the event is rejected."""
        run, _admission = self.start(event, commit=commit)
        if run is None:
            return None
        return self.execute(run)

    def get(self, run_id: str) -> Optional[PipelineRun]:
        with self._runs_lock:
            return self.runs.get(run_id)

    def cancel(self, run_id: str) -> Optional[PipelineRun]:
        return self.governor.cancel(run_id)

    def _on_cancel(self, run: PipelineRun) -> None:
        self.console.print_debug(f"run {run.id} cancelled: {len(run.instances)} instance(s)")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, run: PipelineRun) -> PipelineRun:
        """
        Run every instance, a job's instances only once every instance of the
        jobs it needs is terminal. Dependents of anything that did not succeed
        are skipped (the release gate decides its own skip).
        """
        templates: Dict[str, JobTemplate] = {}
        for inst in run.instances:
            templates.setdefault(inst.template.name, inst.template)

        adj, indeg = build_dag(list(templates.values()))
        ready: List[str] = sorted(name for name, deg in indeg.items() if deg == 0)
        outstanding: Dict[str, int] = {}
        in_flight: Dict[Future, JobInstance] = {}

        def finish(name: str) -> None:
            for nxt in sorted(adj[name]):
                indeg[nxt] -= 1
                if indeg[nxt] == 0:
                    ready.append(nxt)

        try:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                while ready or in_flight:
                    while ready:
                        name = ready.pop(0)
                        submitted = self._schedule(pool, run, templates[name], in_flight)
                        outstanding[name] = submitted
                        if submitted == 0:
                            finish(name)

                    if not in_flight:
                        continue

                    done, _pending = wait(list(in_flight), return_when=FIRST_COMPLETED)
                    for fut in done:
                        inst = in_flight.pop(fut)
                        self._collect(fut, inst, run)
                        name = inst.template.name
                        outstanding[name] -= 1
                        if outstanding[name] == 0:
                            finish(name)
        finally:
            self.governor.release(run)
            self.exchange.forget(run.id)
            self._prune_runs()

        return run

    def _prune_runs(self) -> None:
        """Keep at most `keep_runs` finished runs, dropping the oldest."""
        with self._runs_lock:
            finished = [rid for rid, r in self.runs.items() if r.terminal]
            for rid in finished[: max(0, len(finished) - self.keep_runs)]:
                del self.runs[rid]

    def _schedule(
        self,
        pool: ThreadPoolExecutor,
        run: PipelineRun,
        template: JobTemplate,
        in_flight: Dict[Future, JobInstance],
    ) -> int:
        instances = run.instances_of(template.name)

        if template.release:
            for inst in instances:
                in_flight[pool.submit(self.gate.run, inst, run)] = inst
            return len(instances)

        submitted = 0
        for inst in instances:
            if inst.terminal:
                continue
            ctx = needs_context(inst, run)
            blocked = [n for n, statuses in ctx.needs.items() if any(s is not Status.SUCCEEDED for s in statuses)]
            if blocked:
                if inst.skip():
                    self.console.print_job_skipped(inst.name, f"needs {', '.join(blocked)} did not succeed")
                continue
            if template.if_ is not None and not template.if_.evaluate(ctx):
                if inst.skip():
                    self.console.print_job_skipped(inst.name, f"if: {template.if_}")
                continue
            in_flight[pool.submit(self.executor.run, inst, run)] = inst
            submitted += 1
        return submitted

    def _collect(self, fut: Future, inst: JobInstance, run: PipelineRun) -> None:
        try:
            fut.result()
        except Exception as e:
            # executor errors are handled per step; anything here is a bug in an action
            inst.error = f"{type(e).__name__}: {e}"
            if inst.status is Status.RUNNING:
                inst.settle(Status.FAILED)
            self.console.print_exception(e)

        if inst.status is Status.FAILED and inst.template.fail_fast:
            for sibling in run.instances_of(inst.template.name):
                if sibling is not inst and sibling.cancel():
                    self.console.print_job_cancelled(sibling.name)


def wait_for(run: PipelineRun, predicate: Callable[[PipelineRun], bool], timeout: float = 10.0) -> bool:
    """Poll until predicate(run) holds."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate(run):
            return True
        time.sleep(0.05)
    return predicate(run)
