# dag.py
from __future__ import annotations

from collections import Counter
from typing import Dict, List, Set, Tuple

from .errors import WorkflowError
from .model import JobTemplate

Graph = Tuple[Dict[str, Set[str]], Dict[str, int]]


def build_dag(jobs: List[JobTemplate]) -> Graph:
    """
    Edges point from a job to the jobs that need it.

    Returns (dependents, indegree) keyed by job name. Raises WorkflowError on
    duplicate names or a `needs` entry naming an unknown job.
    """
    counts = Counter(j.name for j in jobs)
    dupes = sorted(n for n, c in counts.items() if c > 1)
    if dupes:
        raise WorkflowError(f"Duplicate job names found: {dupes}")

    dependents: Dict[str, Set[str]] = {j.name: set() for j in jobs}
    indegree: Dict[str, int] = {j.name: 0 for j in jobs}

    for j in jobs:
        for need in dict.fromkeys(j.needs):
            if need not in dependents:
                raise WorkflowError(
                    f"Job '{j.name}' needs missing job '{need}'. Known jobs: {sorted(dependents)}"
                )
            dependents[need].add(j.name)
            indegree[j.name] += 1

    return dependents, indegree


def topo_levels(dependents: Dict[str, Set[str]], indegree: Dict[str, int]) -> List[List[str]]:
    """
    Group jobs into stages: every job's needs sit in earlier stages, and the
    jobs of one stage can run in parallel. Names are sorted within a stage.
    """
    remaining = dict(indegree)
    stage = sorted(n for n, d in remaining.items() if d == 0)
    levels: List[List[str]] = []

    while stage:
        levels.append(stage)
        nxt: Set[str] = set()
        for name in stage:
            del remaining[name]
            for child in dependents.get(name, ()):
                indegree_left = remaining[child] - 1
                remaining[child] = indegree_left
                if indegree_left == 0:
                    nxt.add(child)
        stage = sorted(nxt)

    if remaining:
        raise WorkflowError(f"Job graph has a cycle. Stuck jobs: {sorted(remaining)}")
    return levels
