"""
Error classes for infraplan.

These error types enable retry classification at the provider boundary:
- TransientError: Safe to retry (throttling, timeouts, provider outages)
- PermanentError: Do not retry (invalid properties, schema errors)

Providers raise these errors to signal retry behavior.
The executor catches at the step boundary for retry/backoff and state recording.

Graph and plan construction errors (DuplicateIdError, UnknownReferenceError,
CycleError) are raised before any provider call is made, so a failed
build never leaves partial state behind.
"""

from typing import Any, Optional, Sequence


class InfraplanError(Exception):
    """Base exception for infraplan."""
    pass


class ConfigError(InfraplanError):
    """Configuration validation error."""
    pass


class DeclarationError(InfraplanError):
    """Raised when a declaration file cannot be loaded or compiled."""
    pass


class DuplicateIdError(InfraplanError):
    """Raised when a logical id is declared twice in the same set."""

    def __init__(self, logical_id: str):
        self.logical_id = logical_id
        super().__init__(f"Duplicate logical id: {logical_id}")


class UnknownReferenceError(InfraplanError):
    """Raised when a resource or output references a logical id absent from the set."""

    def __init__(self, logical_id: str, target: str, owner: str = "Resource"):
        self.logical_id = logical_id
        self.target = target
        super().__init__(
            f"{owner} '{logical_id}' references unknown resource '{target}'"
        )


class CycleError(InfraplanError):
    """
    Raised when the dependency graph is not acyclic.

    Attributes:
        cycle: Logical ids forming the cycle, in traversal order
    """

    def __init__(self, cycle: Sequence[str]):
        self.cycle = tuple(cycle)
        path = " -> ".join(list(self.cycle) + [self.cycle[0]]) if self.cycle else ""
        super().__init__(f"Dependency cycle detected: {path}")


class UnresolvedDependencyError(InfraplanError):
    """
    A reference points at a step that has not completed successfully.

    Never expected in a correctly ordered plan. The executor treats it
    as fatal and aborts the remaining plan.
    """

    def __init__(self, logical_id: str, target: str, attribute: Optional[str] = None):
        self.logical_id = logical_id
        self.target = target
        self.attribute = attribute
        ref = f"{target}.{attribute}" if attribute else target
        super().__init__(f"Resource '{logical_id}' has unresolved reference to '{ref}'")


class TransientError(InfraplanError):
    """
    Transient error - safe to retry.

    The executor will retry operations that raise TransientError
    according to the configured retry policy.
    """
    pass


class ProviderThrottled(TransientError):
    """Provider rate limit exceeded."""
    pass


class ProviderUnavailable(TransientError):
    """Provider unreachable, erroring, or a call exceeded its timeout."""
    pass


class PermanentError(InfraplanError):
    """
    Permanent error - do not retry.

    The executor will immediately fail the step without retry
    when PermanentError is raised.
    """
    pass


class ProviderRejected(PermanentError):
    """Provider refused the operation (invalid property, conflict, ...)."""
    pass


class SchemaError(ProviderRejected):
    """Provider-side schema validation failure, surfaced verbatim."""
    pass


class Cancelled(InfraplanError):
    """The apply run was cancelled before this step started."""
    pass


class ApplyError(InfraplanError):
    """
    Wraps any step-level failure.

    Attributes:
        step: The PlanStep that failed
        cause: The underlying exception (if any)
        reason: Short classification ("failed", "dependency_failed",
                "cancelled", "aborted")
    """

    def __init__(self, step: Any, cause: Optional[BaseException] = None, reason: str = "failed"):
        self.step = step
        self.cause = cause
        self.reason = reason
        action = step.action.value
        logical_id = step.logical_id
        detail = str(cause) if cause is not None else reason
        super().__init__(f"{action} {logical_id} {reason}: {detail}")

    @property
    def logical_id(self) -> str:
        return self.step.logical_id

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for run records."""
        result: dict[str, Any] = {
            "logical_id": self.step.logical_id,
            "action": self.step.action.value,
            "reason": self.reason,
            "message": str(self),
        }
        if self.cause is not None:
            result["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause),
            }
        return result
