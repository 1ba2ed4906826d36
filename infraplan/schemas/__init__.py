"""
infraplan.schemas - Schema definitions for the engine.

Resource -> Graph -> Plan -> StepResult -> StateRecord

Lifecycle:
1. Resource: Declared value with literal properties and References
2. Plan: Ordered PlanSteps classified as create/update/delete/noop
3. StepResult: Outcome of executing one PlanStep
4. StateRecord: Last-applied state of a resource, persisted across runs
5. ApplyRun: History record of one apply/destroy invocation
"""

from .resource import (
    REF_PREFIX,
    Reference,
    Resource,
    ResourceSet,
    iter_references,
    to_plain,
)
from .plan import (
    Action,
    Plan,
    PlanStep,
)
from .state_record import (
    StateRecord,
)
from .result import (
    ApplyRun,
    StepResult,
    StepStatus,
    ULID,
)

__all__ = [
    # Resources
    "REF_PREFIX",
    "Reference",
    "Resource",
    "ResourceSet",
    "iter_references",
    "to_plain",
    # Plan
    "Action",
    "Plan",
    "PlanStep",
    # State
    "StateRecord",
    # Results
    "ApplyRun",
    "StepResult",
    "StepStatus",
    "ULID",
]
