"""
Engine - plan / apply / destroy entry points.

Wires the pipeline together:

    ResourceSet -> graph.build -> planner.order -> diff (vs StateStore)
                -> Executor (Provider + StateStore) -> ApplyRun

Graph and plan construction errors (DuplicateIdError,
UnknownReferenceError, CycleError) are raised before the executor is
created, so a bad declaration set never reaches the provider.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from infraplan import graph as graph_builder
from infraplan import planner
from infraplan.config import InfraplanConfig
from infraplan.diff import diff
from infraplan.executor import (
    DEFAULT_CALL_TIMEOUT_S,
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_ATTEMPTS,
    ApplyResult,
    Executor,
)
from infraplan.providers import Provider, ProviderRegistry
from infraplan.schemas import ApplyRun, Plan, Reference, ResourceSet
from infraplan.state_store import FileStateStore, StateStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def build_plan(resources: ResourceSet, store: StateStore) -> Plan:
    """
    Build a plan converging the store's state towards resources.

    Args:
        resources: Desired declaration set
        store: StateStore holding last-applied state

    Returns:
        Plan: create/update/noop steps in dependency order, deletes last

    Raises:
        DuplicateIdError, UnknownReferenceError, CycleError
    """
    graph = graph_builder.build(resources)
    desired = planner.order(graph)
    return Plan(steps=tuple(diff(desired, store.load())))


def build_destroy_plan(store: StateStore) -> Plan:
    """Plan deleting every resource in state, dependents first."""
    return Plan(steps=tuple(diff([], store.load())))


def resolve_outputs(outputs: dict[str, Reference], store: StateStore) -> dict[str, Any]:
    """
    Resolve declaration outputs against applied state.

    An output whose resource or attribute is not in state resolves to None.
    """
    current = store.load()
    resolved: dict[str, Any] = {}
    for name, ref in outputs.items():
        record = current.get(ref.logical_id)
        if record is None or ref.attribute not in record.outputs:
            logger.warning(f"Output '{name}' is unresolved: {ref} not in state")
            resolved[name] = None
        else:
            resolved[name] = record.outputs[ref.attribute]
    return resolved


@dataclass
class RunOutcome:
    """
    Result of an apply or destroy invocation.

    Attributes:
        plan: The plan that was executed
        result: Per-step results from the executor
        run: The persisted run record
        outputs: Resolved declaration outputs (empty for destroy)
    """
    plan: Plan
    result: ApplyResult
    run: ApplyRun
    outputs: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.result.success

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run.run_id,
            "status": self.run.status,
            "plan": self.plan.to_dict(),
            "results": [r.to_dict() for r in self.result.results],
            "outputs": self.outputs,
        }


class Engine:
    """
    Declarative infrastructure engine.

    Usage:
        engine = Engine(provider=InMemoryProvider(), store=InMemoryStateStore())
        plan = engine.plan(resources)
        outcome = engine.apply(resources)
        engine.destroy()
    """

    def __init__(
        self,
        provider: Provider,
        store: StateStore,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = 1.0,
        backoff_multiplier: float = 2.0,
        call_timeout_s: Optional[float] = DEFAULT_CALL_TIMEOUT_S,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.provider = provider
        self.store = store
        self._executor_options: dict[str, Any] = {
            "concurrency": concurrency,
            "max_attempts": max_attempts,
            "backoff_seconds": backoff_seconds,
            "backoff_multiplier": backoff_multiplier,
            "call_timeout_s": call_timeout_s,
        }
        if sleep is not None:
            self._executor_options["sleep"] = sleep
        self._executor: Optional[Executor] = None

    @classmethod
    def from_config(
        cls,
        config: InfraplanConfig,
        registry: Optional[ProviderRegistry] = None,
        concurrency: Optional[int] = None,
    ) -> "Engine":
        """
        Build an engine from configuration.

        Args:
            config: Loaded InfraplanConfig
            registry: Provider registry (defaults to built-ins + entry points)
            concurrency: Override config.concurrency
        """
        registry = registry or ProviderRegistry.create_default()
        provider = registry.create(config.provider_name, config.provider_options)
        store = FileStateStore(config.get_state_dir())
        return cls(
            provider=provider,
            store=store,
            concurrency=concurrency or config.concurrency,
            max_attempts=config.max_attempts,
            backoff_seconds=config.backoff_seconds,
            backoff_multiplier=config.backoff_multiplier,
            call_timeout_s=config.call_timeout_s,
        )

    def plan(self, resources: ResourceSet) -> Plan:
        """Compute the plan for resources without applying it."""
        plan = build_plan(resources, self.store)
        counts = plan.counts()
        logger.info(
            "Plan: " + (", ".join(f"{n} {action}" for action, n in counts.items() if n) or "empty")
        )
        return plan

    def apply(self, resources: ResourceSet) -> RunOutcome:
        """
        Plan and apply resources.

        Raises:
            DuplicateIdError, UnknownReferenceError, CycleError: Before any
                provider call is made
        """
        plan = self.plan(resources)
        outcome = self._execute("apply", plan)
        outcome.outputs = resolve_outputs(resources.outputs, self.store)
        outcome.run.outputs = outcome.outputs
        self.store.store_run(outcome.run)
        return outcome

    def destroy(self) -> RunOutcome:
        """Delete every resource recorded in state."""
        plan = build_destroy_plan(self.store)
        logger.info(f"Destroy plan: {len(plan)} deletes")
        return self._execute("destroy", plan)

    def cancel(self) -> None:
        """Cancel the apply in progress, if any."""
        if self._executor is not None:
            self._executor.cancel()

    def _execute(self, command: str, plan: Plan) -> RunOutcome:
        run = self.store.create_run(command)
        logger.info(f"Starting {command} run {run.run_id}", extra={"run_id": run.run_id})

        self._executor = Executor(self.provider, self.store, **self._executor_options)
        try:
            result = self._executor.apply(plan)
        finally:
            executor, self._executor = self._executor, None

        run.completed_at = _utcnow()
        run.results = [r.to_dict() for r in result.results]
        if executor.cancelled:
            run.status = "cancelled"
        elif result.success:
            run.status = "success"
        else:
            run.status = "failed"
        self.store.store_run(run)

        logger.info(
            f"{command} run {run.run_id} finished with status {run.status}",
            extra={"run_id": run.run_id},
        )
        return RunOutcome(plan=plan, result=result, run=run)
