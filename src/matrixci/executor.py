# executor.py
from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Dict, Optional

from .actions import ActionRegistry, StepContext, builtin
from .artifacts import ArtifactExchange
from .cache import CacheStore
from .conditions import ConditionContext
from .errors import (
    ArtifactError,
    CancellationError,
    CIError,
    ExpressionError,
    ReleaseError,
    StepFailure,
    UnknownActionError,
)
from .model import JobInstance, PipelineRun, Status, Step, StepResult
from .release import ReleaseSink
from .shell import CommandRunner, ShellRunner
from .ui.console import Console, get_console

# Errors that fail the owning job instance and nothing else
JOB_ERRORS = (StepFailure, ArtifactError, CIError, UnknownActionError, ReleaseError, ExpressionError, OSError)


def step_env(run: PipelineRun, instance: JobInstance, step: Step) -> Dict[str, str]:
    """Process env < workflow env < job env < step env, plus the run facts."""
    env = os.environ.copy()
    env.update(run.env)
    env.update(instance.env)
    env.update(step.env)
    env.update(
        {
            "CI": "true",
            "MATRIXCI": "true",
            "MATRIXCI_RUN_ID": run.id,
            "MATRIXCI_JOB": instance.template.name,
            "GITHUB_REF": run.ref,
            "GITHUB_REF_NAME": run.event.ref_name,
            "GITHUB_SHA": run.commit or "",
            "GITHUB_EVENT_NAME": run.event.kind.value,
            "GITHUB_WORKFLOW": run.workflow,
            "RUNNER_LABEL": instance.runs_on,
        }
    )
    for axis, value in instance.matrix.items():
        env[f"MATRIX_{axis.upper().replace('-', '_')}"] = value
    return env


class JobExecutor:
    """
    Runs one job instance's steps, strictly in order, on the calling thread.

    - a step whose `if` guard is false is skipped and counts as success
    - the first failing step fails the instance; later steps never run
    - nothing is rolled back on failure
    - cancellation is checked before every step and while commands run
    """

    def __init__(
        self,
        workspace: str | Path,
        exchange: ArtifactExchange,
        *,
        shell: Optional[CommandRunner] = None,
        cache: Optional[CacheStore] = None,
        release_sink: Optional[ReleaseSink] = None,
        registry: Optional[ActionRegistry] = None,
        console: Optional[Console] = None,
        repo_url: Optional[str] = None,
    ):
        self.workspace = Path(workspace).resolve()
        self.exchange = exchange
        self.shell = shell or ShellRunner()
        self.cache = cache
        self.release_sink = release_sink
        self.registry = registry or builtin
        self.console = console or get_console()
        self.repo_url = repo_url

    # ------------------------------------------------------------------

    def run(self, instance: JobInstance, run: PipelineRun) -> Status:
        if not instance.start():
            return Status.CANCELLED
        self.console.print_job_start(instance.name, instance.runs_on)

        guard_ctx = ConditionContext(event=run.event, matrix=instance.matrix, workflow=run.workflow)
        post = []

        try:
            for step in instance.steps:
                self._checkpoint(instance)

                if step.if_ is not None and not step.if_.evaluate(guard_ctx):
                    self.console.print_step_skipped(instance.name, step.name, str(step.if_))
                    instance.results.append(StepResult(step.name, Status.SKIPPED))
                    continue

                self.console.print_step(instance.name, step.name)
                started = time.monotonic()
                try:
                    output = self._run_step(instance, run, step, post)
                except CancellationError:
                    instance.results.append(
                        StepResult(step.name, Status.CANCELLED, duration=time.monotonic() - started)
                    )
                    raise
                except StepFailure as e:
                    instance.results.append(
                        StepResult(
                            step.name,
                            Status.FAILED,
                            exit_code=e.exit_code,
                            output=(e.stdout + e.stderr)[-4000:],
                            duration=time.monotonic() - started,
                        )
                    )
                    raise
                except JOB_ERRORS as e:
                    instance.results.append(
                        StepResult(step.name, Status.FAILED, output=str(e), duration=time.monotonic() - started)
                    )
                    raise
                instance.results.append(
                    StepResult(step.name, Status.SUCCEEDED, exit_code=0, output=output, duration=time.monotonic() - started)
                )

            self._checkpoint(instance)
            for hook in post:
                self._checkpoint(instance)
                hook()

        except CancellationError:
            instance.cancel()
            self.console.print_job_cancelled(instance.name)
            return instance.status

        except StepFailure as e:
            instance.error = str(e)
            if instance.settle(Status.FAILED):
                self.console.print_failure(instance.name, str(e), exit_code=e.exit_code, output=e.stdout + e.stderr)
            return instance.status

        except JOB_ERRORS as e:
            instance.error = str(e)
            if instance.settle(Status.FAILED):
                self.console.print_failure(instance.name, f"{type(e).__name__}: {e}")
            return instance.status

        if instance.settle(Status.SUCCEEDED):
            self.console.print_success(instance.name)
        return instance.status

    # ------------------------------------------------------------------

    def _checkpoint(self, instance: JobInstance) -> None:
        if instance.cancel_token.is_set():
            raise CancellationError(f"{instance.id} cancelled")

    def _run_step(self, instance: JobInstance, run: PipelineRun, step: Step, post: list) -> str:
        if step.uses is not None:
            action = self.registry.get(step.action)
            ctx = StepContext(
                instance=instance,
                run=run,
                step=step,
                workspace=self.workspace,
                exchange=self.exchange,
                console=self.console,
                cache=self.cache,
                release_sink=self.release_sink,
                repo_url=self.repo_url,
            )
            action(ctx)
            post.extend(ctx.post)
            return ""

        cwd = (self.workspace / (step.cwd or ".")).resolve()
        if not cwd.exists():
            raise FileNotFoundError(f"[{instance.name}] step '{step.name}' cwd not found: {cwd}")

        result = self.shell.run(
            step.run,
            cwd=cwd,
            env=step_env(run, instance, step),
            cancel=instance.cancel_token,
        )
        if result.exit_code != 0:
            raise StepFailure(
                job=instance.name,
                step=step.name,
                cmd=step.run,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result.stdout
