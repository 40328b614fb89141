# conditions.py
# Typed run conditions for jobs and steps.
#
# Conditions are small expression trees evaluated against a ConditionContext;
# nothing here parses or evaluates strings. Combine them with & | ~:
#
#   tag_ref() & needs_succeeded()
#   matrix_eq("os", "windows-latest")
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Sequence, Tuple

from . import globs
from .model import TAG_PREFIX, Event, EventKind, Status


@dataclass(frozen=True)
class ConditionContext:
    """Everything a condition may observe about the current instance and run."""
    event: Event
    matrix: Mapping[str, str] = field(default_factory=dict)
    # upstream template name -> statuses of all its instances
    needs: Mapping[str, Sequence[Status]] = field(default_factory=dict)
    workflow: str = ""


class Condition:
    def evaluate(self, ctx: ConditionContext) -> bool:
        raise NotImplementedError

    def __and__(self, other: Condition) -> Condition:
        return And(self, other)

    def __or__(self, other: Condition) -> Condition:
        return Or(self, other)

    def __invert__(self) -> Condition:
        return Not(self)


@dataclass(frozen=True)
class Always(Condition):
    def evaluate(self, ctx: ConditionContext) -> bool:
        return True

    def __str__(self) -> str:
        return "always()"


@dataclass(frozen=True)
class RefStartsWith(Condition):
    prefix: str

    def evaluate(self, ctx: ConditionContext) -> bool:
        return ctx.event.ref.startswith(self.prefix)

    def __str__(self) -> str:
        return f"startsWith(github.ref, '{self.prefix}')"


@dataclass(frozen=True)
class RefMatches(Condition):
    pattern: str

    def evaluate(self, ctx: ConditionContext) -> bool:
        return globs.match(ctx.event.ref, self.pattern)

    def __str__(self) -> str:
        return f"github.ref ~ '{self.pattern}'"


@dataclass(frozen=True)
class EventIs(Condition):
    kind: EventKind

    def evaluate(self, ctx: ConditionContext) -> bool:
        return ctx.event.kind is self.kind

    def __str__(self) -> str:
        return f"github.event_name == '{self.kind.value}'"


@dataclass(frozen=True)
class MatrixEquals(Condition):
    axis: str
    value: str

    def evaluate(self, ctx: ConditionContext) -> bool:
        return ctx.matrix.get(self.axis) == self.value

    def __str__(self) -> str:
        return f"matrix.{self.axis} == '{self.value}'"


@dataclass(frozen=True)
class NeedsSucceeded(Condition):
    """Every instance of the named upstream jobs (all of them when `jobs` is empty) succeeded."""
    jobs: Tuple[str, ...] = ()

    def evaluate(self, ctx: ConditionContext) -> bool:
        names = self.jobs or tuple(ctx.needs)
        for name in names:
            statuses = ctx.needs.get(name)
            if not statuses:
                return False
            if any(s is not Status.SUCCEEDED for s in statuses):
                return False
        return True

    def __str__(self) -> str:
        return f"success({', '.join(self.jobs)})"


@dataclass(frozen=True)
class And(Condition):
    left: Condition
    right: Condition

    def evaluate(self, ctx: ConditionContext) -> bool:
        return self.left.evaluate(ctx) and self.right.evaluate(ctx)

    def __str__(self) -> str:
        return f"({self.left} && {self.right})"


@dataclass(frozen=True)
class Or(Condition):
    left: Condition
    right: Condition

    def evaluate(self, ctx: ConditionContext) -> bool:
        return self.left.evaluate(ctx) or self.right.evaluate(ctx)

    def __str__(self) -> str:
        return f"({self.left} || {self.right})"


@dataclass(frozen=True)
class Not(Condition):
    inner: Condition

    def evaluate(self, ctx: ConditionContext) -> bool:
        return not self.inner.evaluate(ctx)

    def __str__(self) -> str:
        return f"!{self.inner}"


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def always() -> Condition:
    return Always()


def starts_with_ref(prefix: str) -> Condition:
    return RefStartsWith(prefix)


def tag_ref(pattern: str | None = None) -> Condition:
    """Any tag ref, or only tags whose full ref matches `pattern`."""
    if pattern is None:
        return RefStartsWith(TAG_PREFIX)
    return RefMatches(pattern)


def event_is(kind: str | EventKind) -> Condition:
    return EventIs(EventKind(kind))


def matrix_eq(axis: str, value: str) -> Condition:
    return MatrixEquals(axis, value)


def needs_succeeded(*jobs: str) -> Condition:
    return NeedsSucceeded(tuple(jobs))
