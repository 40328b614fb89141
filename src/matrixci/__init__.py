# matrixci
from __future__ import annotations

from .conditions import always, event_is, matrix_eq, needs_succeeded, starts_with_ref, tag_ref
from .dsl import job, matrix, on, pull_request, push, sh, uses, wf
from .model import Event, JobInstance, JobTemplate, PipelineRun, Status, Step
from .presets import rust_workflow
from .runner import Pipeline
from .workflow import Workflow, load_workflow

__version__ = "0.1.0"
