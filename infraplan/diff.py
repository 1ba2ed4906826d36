"""
Diff engine - classify desired resources against last-applied state.

Classification, per resource:
- absent from current state           -> create
- applied properties equal to the
  resolved desired properties         -> noop
- properties differ                   -> update
- in current state, not desired       -> delete (after every other step,
                                         in reverse dependency order)

Equality is byte-for-byte on canonical JSON (sorted keys, compact
separators), the same canonical form used for content hashing.

References are resolved with the outputs stored in current state, but only
for dependencies that are themselves noop. When a dependency is being
created or updated its outputs are not known yet, so the comparison is
deferred: the step is planned as a deferred update and the executor makes
the final call once the dependency has completed.
"""

import json
import logging
from typing import Any, Mapping, Sequence

from infraplan.errors import DeclarationError, UnresolvedDependencyError
from infraplan.planner import topological_sort
from infraplan.schemas import (
    Action,
    PlanStep,
    Reference,
    Resource,
    StateRecord,
)

logger = logging.getLogger(__name__)


def canonical_json(value: Any) -> str:
    """
    Canonical JSON form used for property comparison.

    Raises:
        DeclarationError: If the value cannot be stored as JSON
    """
    try:
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise DeclarationError(f"Properties are not JSON-serializable: {e}") from e


def properties_equal(left: Any, right: Any) -> bool:
    """True if both property bags serialize to identical canonical JSON."""
    return canonical_json(left) == canonical_json(right)


def resolve_references(
    value: Any,
    outputs: Mapping[str, Mapping[str, Any]],
    logical_id: str,
) -> Any:
    """
    Resolve Reference values in a property bag.

    Args:
        value: The value containing potential References
        outputs: logical_id -> outputs of resources already applied
        logical_id: Id of the resource being resolved (for error messages)

    Returns:
        The value with every Reference replaced by the referenced output

    Raises:
        UnresolvedDependencyError: If a referenced resource has no recorded
                                   outputs or lacks the attribute
    """
    if isinstance(value, Reference):
        if value.logical_id not in outputs:
            raise UnresolvedDependencyError(logical_id, value.logical_id, value.attribute)
        target_outputs = outputs[value.logical_id]
        if value.attribute not in target_outputs:
            raise UnresolvedDependencyError(logical_id, value.logical_id, value.attribute)
        return target_outputs[value.attribute]
    elif isinstance(value, dict):
        return {k: resolve_references(v, outputs, logical_id) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [resolve_references(v, outputs, logical_id) for v in value]
    return value


def _classify(
    resource: Resource,
    record: StateRecord,
    actions: Mapping[str, Action],
    current: Mapping[str, StateRecord],
) -> PlanStep:
    """Classify a resource that already exists in current state."""
    deps = tuple(resource.dependency_ids())
    referenced = []
    for ref in resource.references():
        if ref.logical_id not in referenced:
            referenced.append(ref.logical_id)

    pending = [dep for dep in referenced if actions.get(dep) != Action.NOOP]
    if pending:
        return PlanStep(
            resource=resource,
            action=Action.UPDATE,
            reason=f"deferred: waits on outputs of {', '.join(pending)}",
            depends_on=deps,
            deferred=True,
        )

    outputs = {dep: current[dep].outputs for dep in referenced}
    try:
        resolved = resolve_references(resource.properties, outputs, resource.logical_id)
    except UnresolvedDependencyError as e:
        return PlanStep(
            resource=resource,
            action=Action.UPDATE,
            reason=f"deferred: {e}",
            depends_on=deps,
            deferred=True,
        )

    if record.kind != resource.kind:
        return PlanStep(
            resource=resource,
            action=Action.UPDATE,
            reason=f"kind changed: {record.kind} -> {resource.kind}",
            depends_on=deps,
        )
    if properties_equal(resolved, record.applied_properties):
        reason = "unchanged" if tuple(record.dependencies) == deps else "unchanged (dependencies moved)"
        return PlanStep(resource=resource, action=Action.NOOP, reason=reason, depends_on=deps)

    changed = sorted(
        key for key in set(resolved) | set(record.applied_properties)
        if canonical_json(resolved.get(key)) != canonical_json(record.applied_properties.get(key))
    )
    return PlanStep(
        resource=resource,
        action=Action.UPDATE,
        reason=f"changed: {', '.join(changed)}",
        depends_on=deps,
    )


def _deletion_steps(removed: list[str], current: Mapping[str, StateRecord]) -> list[PlanStep]:
    """Delete steps for resources no longer declared, dependents first."""
    dependencies = {logical_id: current[logical_id].dependencies for logical_id in removed}
    ordered = list(reversed(topological_sort(removed, dependencies)))

    steps: list[PlanStep] = []
    for logical_id in ordered:
        record = current[logical_id]
        # Resources that depended on this one must be deleted first
        dependents = tuple(
            other for other in ordered
            if other != logical_id and logical_id in current[other].dependencies
        )
        resource = Resource(
            kind=record.kind,
            logical_id=logical_id,
            properties=dict(record.applied_properties),
            depends_on=tuple(record.dependencies),
        )
        steps.append(PlanStep(
            resource=resource,
            action=Action.DELETE,
            reason="no longer declared",
            depends_on=dependents,
        ))
    return steps


def diff(
    desired: Sequence[Resource],
    current: Mapping[str, StateRecord],
) -> list[PlanStep]:
    """
    Compare desired resources against last-applied state.

    Args:
        desired: Resources in planner order (dependency-first)
        current: logical_id -> StateRecord from the StateStore

    Returns:
        PlanSteps: create/update/noop in desired order, then deletes in
        reverse dependency order
    """
    steps: list[PlanStep] = []
    actions: dict[str, Action] = {}

    for resource in desired:
        record = current.get(resource.logical_id)
        if record is None:
            step = PlanStep(
                resource=resource,
                action=Action.CREATE,
                reason="not in state",
                depends_on=tuple(resource.dependency_ids()),
            )
        else:
            step = _classify(resource, record, actions, current)
        actions[resource.logical_id] = step.action
        steps.append(step)

    desired_ids = {r.logical_id for r in desired}
    removed = [logical_id for logical_id in current if logical_id not in desired_ids]
    steps.extend(_deletion_steps(removed, current))

    logger.debug(
        f"Diff: {len(steps)} steps "
        f"({sum(1 for s in steps if s.action.calls_provider)} with changes)"
    )
    return steps
