# server.py
# Webhook surface: the source host (or anything else) posts events, runs are
# admitted and executed in the background, status is polled per run.
from __future__ import annotations

from typing import Any, Literal, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from .model import Event, PipelineRun
from .release import release_outcome
from .runner import Pipeline

# -------------------- Schemas --------------------

class EventIn(BaseModel):
    kind: Literal["push", "pull_request", "tag"]
    ref: str
    changed_paths: list[str] = Field(default_factory=list)
    sha: str = ""


class RunCreated(BaseModel):
    run_id: str
    group: str
    cancelled_run_id: Optional[str] = None
    jobs: list[str]


class StepOut(BaseModel):
    name: str
    status: str
    exit_code: Optional[int] = None


class JobOut(BaseModel):
    name: str
    job: str
    matrix: dict[str, str]
    runs_on: str
    status: str
    error: Optional[str] = None
    steps: list[StepOut]


class ReleaseOut(BaseModel):
    state: str
    tag: Optional[str] = None
    assets: list[str] = Field(default_factory=list)
    reason: str = ""


class RunOut(BaseModel):
    run_id: str
    workflow: str
    ref: str
    event: str
    terminal: bool
    jobs: list[JobOut]
    release: Optional[ReleaseOut] = None


def run_to_out(run: PipelineRun) -> RunOut:
    outcome = release_outcome(run)
    return RunOut(
        run_id=run.id,
        workflow=run.workflow,
        ref=run.ref,
        event=run.event.kind.value,
        terminal=run.terminal,
        jobs=[
            JobOut(
                name=i.name,
                job=i.template.name,
                matrix=i.matrix,
                runs_on=i.runs_on,
                status=i.status.value,
                error=i.error,
                steps=[StepOut(name=r.name, status=r.status.value, exit_code=r.exit_code) for r in i.results],
            )
            for i in run.instances
        ],
        release=(
            ReleaseOut(state=outcome.state.value, tag=outcome.tag, assets=outcome.assets, reason=outcome.reason)
            if outcome is not None
            else None
        ),
    )


# -------------------- App --------------------

def create_app(pipeline: Pipeline) -> FastAPI:
    app = FastAPI(title="matrixci control plane")

    @app.post("/events", response_model=RunCreated, responses={204: {"description": "event did not start a run"}})
    def post_event(req: EventIn, background: BackgroundTasks) -> Any:
        event = Event.create(req.kind, req.ref, req.changed_paths, sha=req.sha)
        run, admission = pipeline.start(event, commit=req.sha or None)
        if run is None:
            return Response(status_code=204)

        background.add_task(pipeline.execute, run)
        return RunCreated(
            run_id=run.id,
            group=admission.group,
            cancelled_run_id=admission.cancelled_run_id,
            jobs=[i.name for i in run.instances],
        )

    @app.get("/runs/{run_id}", response_model=RunOut)
    def get_run(run_id: str) -> Any:
        run = pipeline.get(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return run_to_out(run)

    @app.post("/runs/{run_id}/cancel")
    def cancel_run(run_id: str) -> Any:
        run = pipeline.get(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        if run.terminal:
            raise HTTPException(status_code=409, detail="Run already finished")
        cancelled = pipeline.cancel(run_id)
        return {"ok": True, "cancelled": cancelled is not None}

    return app
