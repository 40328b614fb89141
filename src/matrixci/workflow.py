# workflow.py
from __future__ import annotations

import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from .dag import build_dag, topo_levels
from .errors import WorkflowError
from .model import JobTemplate
from .triggers import Triggers


@dataclass
class Workflow:
    """
    A named pipeline: triggers, a read-only env shared by every step, and jobs.
    Runs are grouped for cancellation by (ref, name).
    """
    name: str
    on: Triggers
    jobs: List[JobTemplate]
    env: Dict[str, str] = field(default_factory=dict)

    def job(self, name: str) -> JobTemplate:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)

    def stages(self) -> List[List[str]]:
        return topo_levels(*build_dag(self.jobs))


def validate_workflow(wf: Workflow) -> List[List[str]]:
    """
    Check job names are unique, every `needs` exists and there is no cycle.
    Returns the topological stages.
    """
    if not wf.jobs:
        raise WorkflowError(f"workflow {wf.name!r} has no jobs")
    for j in wf.jobs:
        if not j.steps:
            raise WorkflowError(f"job {j.name!r} has no steps")
    return wf.stages()


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> Workflow
      - WORKFLOW = Workflow(...)
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"matrixci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    wf = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        wf = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        wf = globals_dict["WORKFLOW"]

    if not isinstance(wf, Workflow):
        raise TypeError(
            "Workflow file must return/define a Workflow. "
            "Define workflow() -> Workflow or WORKFLOW = wf(...)."
        )

    validate_workflow(wf)
    return wf
