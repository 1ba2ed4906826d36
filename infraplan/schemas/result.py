"""
Result schemas - tracking step results and apply runs.

StepResult tracks the result of executing a single plan step.
ApplyRun is the persisted record of one plan/apply/destroy invocation.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from .plan import PlanStep

if TYPE_CHECKING:
    from infraplan.errors import ApplyError

# ULID type alias for documentation
ULID = str


class StepStatus(str, Enum):
    """Status of a step execution."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StepResult:
    """
    The outcome of executing a single plan step.

    Attributes:
        step: The PlanStep executed
        status: completed, failed, skipped (dependency failed or run
                aborted), or cancelled
        outputs: Outputs of the resource after the step (empty for deletes)
        error: ApplyError if the step did not complete
        provider_called: Whether a provider operation was issued
        attempts: Number of provider call attempts made
        started_at: When the step started (None if never started)
        completed_at: When the step finished (None if never started)
    """
    step: PlanStep
    status: StepStatus
    outputs: dict[str, Any] = field(default_factory=dict)
    error: Optional["ApplyError"] = None
    provider_called: bool = False
    attempts: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.status == StepStatus.COMPLETED and self.error is not None:
            raise ValueError("Completed steps must not carry an error")
        if self.status != StepStatus.COMPLETED and self.error is None:
            raise ValueError(f"{self.status.value} steps must carry an ApplyError")
        if self.status in (StepStatus.COMPLETED, StepStatus.FAILED):
            if self.started_at is None or self.completed_at is None:
                raise ValueError(f"{self.status.value} steps must have started_at and completed_at")

    @property
    def ok(self) -> bool:
        return self.status == StepStatus.COMPLETED

    @property
    def logical_id(self) -> str:
        return self.step.logical_id

    @property
    def duration_ms(self) -> Optional[int]:
        """Calculate execution duration in milliseconds if both timestamps present."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "logical_id": self.step.logical_id,
            "kind": self.step.kind,
            "action": self.step.action.value,
            "status": self.status.value,
            "provider_called": self.provider_called,
            "attempts": self.attempts,
        }
        if self.outputs:
            result["outputs"] = self.outputs
        if self.error is not None:
            result["error"] = self.error.to_dict()
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        return result


@dataclass
class ApplyRun:
    """
    A record of one engine invocation.

    Attributes:
        run_id: ULID uniquely identifying this run
        command: "apply" or "destroy"
        started_at: When the run started
        completed_at: When the run completed (None if still running)
        status: "running", "success", "failed", "cancelled"
        results: Serialized StepResults, in plan order
        outputs: Resolved declaration outputs after the run
    """
    run_id: ULID
    command: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: str = "running"
    results: list[dict[str, Any]] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "run_id": self.run_id,
            "command": self.command,
            "started_at": self.started_at.isoformat(),
            "status": self.status,
            "results": self.results,
        }
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        if self.outputs:
            result["outputs"] = self.outputs
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ApplyRun":
        """Deserialize from dictionary."""
        completed_at = None
        if data.get("completed_at"):
            completed_at = datetime.fromisoformat(data["completed_at"])
        return cls(
            run_id=data["run_id"],
            command=data["command"],
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=completed_at,
            status=data.get("status", "running"),
            results=data.get("results", []),
            outputs=data.get("outputs", {}),
        )
