"""
StateRecord schema - last-applied state of a single resource.

StateRecords are owned by the StateStore and only written by the executor
after a provider call succeeds.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StateRecord:
    """
    Record of what was last applied for a resource.

    Attributes:
        logical_id: Logical id of the resource
        kind: Resource kind
        applied_properties: Fully resolved properties sent to the provider
        provider_id: Identifier assigned by the provider on create
        last_applied_at: When the last successful provider call finished
        outputs: Outputs returned by the provider, used to resolve
                 references on later runs
        dependencies: Logical ids this resource depended on when applied,
                      used to order its deletion
    """
    logical_id: str
    kind: str
    applied_properties: dict[str, Any]
    provider_id: str
    last_applied_at: datetime = field(default_factory=_utcnow)
    outputs: dict[str, Any] = field(default_factory=dict)
    dependencies: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "logical_id": self.logical_id,
            "kind": self.kind,
            "applied_properties": self.applied_properties,
            "provider_id": self.provider_id,
            "last_applied_at": self.last_applied_at.isoformat(),
            "outputs": self.outputs,
            "dependencies": list(self.dependencies),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StateRecord":
        """Deserialize from dictionary."""
        return cls(
            logical_id=data["logical_id"],
            kind=data["kind"],
            applied_properties=data.get("applied_properties", {}),
            provider_id=data["provider_id"],
            last_applied_at=datetime.fromisoformat(data["last_applied_at"]),
            outputs=data.get("outputs", {}),
            dependencies=tuple(data.get("dependencies", [])),
        )
