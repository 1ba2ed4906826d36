"""
Plan schemas - the ordered, classified unit of work for one apply run.

A Plan is built fresh per run from the dependency graph and the current
state, executed once, and discarded.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from .resource import Resource


class Action(str, Enum):
    """Action taken for a resource in a plan."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"

    @property
    def symbol(self) -> str:
        """Short marker used when printing plans."""
        return {
            Action.CREATE: "+",
            Action.UPDATE: "~",
            Action.DELETE: "-",
            Action.NOOP: "=",
        }[self]

    @property
    def calls_provider(self) -> bool:
        return self != Action.NOOP


@dataclass(frozen=True)
class PlanStep:
    """
    A single step in a Plan.

    Attributes:
        resource: The resource this step acts on. For deletions this is
                  rebuilt from the StateRecord (applied properties).
        action: create, update, delete, or noop
        reason: Human-readable classification reason
        depends_on: Logical ids whose steps must succeed before this one
        deferred: True when the comparison against applied state waits
                  for a dependency's new outputs (finalized by the executor)
    """
    resource: Resource
    action: Action
    reason: str = ""
    depends_on: tuple[str, ...] = field(default_factory=tuple)
    deferred: bool = False

    @property
    def logical_id(self) -> str:
        return self.resource.logical_id

    @property
    def kind(self) -> str:
        return self.resource.kind

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "logical_id": self.logical_id,
            "kind": self.kind,
            "action": self.action.value,
            "reason": self.reason,
        }
        if self.depends_on:
            result["depends_on"] = list(self.depends_on)
        if self.deferred:
            result["deferred"] = True
        return result


@dataclass(frozen=True)
class Plan:
    """An ordered sequence of PlanSteps."""
    steps: tuple[PlanStep, ...] = field(default_factory=tuple)

    def __post_init__(self):
        ids = [s.logical_id for s in self.steps]
        if len(ids) != len(set(ids)):
            duplicates = {i for i in ids if ids.count(i) > 1}
            raise ValueError(f"Duplicate plan steps for: {duplicates}")

    def __iter__(self) -> Iterator[PlanStep]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def get_step(self, logical_id: str) -> PlanStep | None:
        for step in self.steps:
            if step.logical_id == logical_id:
                return step
        return None

    def changes(self) -> tuple[PlanStep, ...]:
        """Steps that call the provider (everything except noop)."""
        return tuple(s for s in self.steps if s.action.calls_provider)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes())

    def counts(self) -> dict[str, int]:
        """Number of steps per action."""
        counts = {action.value: 0 for action in Action}
        for step in self.steps:
            counts[step.action.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps": [s.to_dict() for s in self.steps],
            "counts": self.counts(),
        }
