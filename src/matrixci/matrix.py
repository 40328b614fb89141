# matrix.py
# Job matrix expansion: one JobInstance per element of the Cartesian product
# of the template's axes, with ${{ ... }} placeholders substituted.
from __future__ import annotations

import itertools
import re
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Sequence

from .errors import ExpressionError
from .model import Event, JobInstance, JobTemplate, Step

_PLACEHOLDER = re.compile(r"\$\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\.([A-Za-z0-9_.-]+)\s*\}\}")


class ExpansionContext:
    """Values a placeholder may resolve to: matrix axes, run facts and the workflow env."""

    def __init__(
        self,
        run_id: str = "local",
        event: Event | None = None,
        workflow: str = "",
        env: Mapping[str, str] | None = None,
        sha: str = "",
    ):
        self.run_id = run_id
        self.event = event
        self.workflow = workflow
        self.env = dict(env or {})
        self.sha = sha or (event.sha if event else "")

    def github(self) -> Dict[str, str]:
        if self.event is None:
            return {"workflow": self.workflow, "sha": self.sha}
        return {
            "ref": self.event.ref,
            "ref_name": self.event.ref_name,
            "sha": self.sha,
            "event_name": self.event.kind.value,
            "workflow": self.workflow,
        }


def substitute(text: str, namespaces: Mapping[str, Mapping[str, str]]) -> str:
    def _sub(m: re.Match) -> str:
        ns, key = m.group(1), m.group(2)
        values = namespaces.get(ns)
        if values is None or key not in values:
            raise ExpressionError(f"unknown expression '{m.group(0)}' in {text!r}")
        return str(values[key])

    return _PLACEHOLDER.sub(_sub, text)


def _resolve_step(step: Step, namespaces: Mapping[str, Mapping[str, str]]) -> Step:
    def s(v: Optional[str]) -> Optional[str]:
        return None if v is None else substitute(v, namespaces)

    return replace(
        step,
        name=s(step.name),
        run=s(step.run),
        with_={k: s(v) for k, v in step.with_.items()},
        cwd=s(step.cwd),
        env={k: s(v) for k, v in step.env.items()},
    )


def combinations(axes: Mapping[str, Sequence[str]]) -> List[Dict[str, str]]:
    """
    Cartesian product over ordered axes. The first declared axis is the
    outermost loop; values keep their declared order.
    """
    if not axes:
        return [{}]
    names = list(axes)
    for name in names:
        values = list(axes[name])
        if not values:
            raise ValueError(f"matrix axis {name!r} has no values")
        if len(set(values)) != len(values):
            raise ValueError(f"matrix axis {name!r} has duplicate values: {values}")
    return [dict(zip(names, combo)) for combo in itertools.product(*(list(axes[n]) for n in names))]


def expand(
    template: JobTemplate,
    axes: Mapping[str, Sequence[str]] | None = None,
    *,
    context: ExpansionContext | None = None,
) -> List[JobInstance]:
    """
    Expand a JobTemplate into concrete JobInstances.

    Args:
        template: the job to expand
        axes: axis values to expand over; defaults to template.matrix
        context: run facts for github.* / env.* placeholders

    Returns:
        One JobInstance per axis combination, in deterministic order.
    """
    ctx = context or ExpansionContext()
    axes = template.matrix if axes is None else axes
    env = {**ctx.env, **template.env}

    instances: List[JobInstance] = []
    for combo in combinations(axes):
        namespaces = {"matrix": combo, "github": ctx.github(), "env": env}
        display = template.display_name or template.name
        name = substitute(display, namespaces)
        if combo and template.display_name is None:
            name = f"{template.name} ({', '.join(combo.values())})"
        instances.append(
            JobInstance(
                run_id=ctx.run_id,
                template=template,
                matrix=combo,
                name=name,
                runs_on=substitute(template.runs_on, namespaces),
                steps=[_resolve_step(st, namespaces) for st in template.steps],
                env={k: substitute(v, namespaces) for k, v in template.env.items()},
            )
        )
    return instances
