"""
Executor - Plan step dispatch and execution engine.

The Executor implements:
- Reference resolution (Reference values from earlier step outputs)
- Provider dispatch for create/update/delete steps
- Retry logic with exponential backoff for transient provider errors
- Per-call timeouts (a hung call becomes ProviderUnavailable)
- Incremental state recording (StateStore written after every success)
- Concurrent execution of independent branches on a bounded worker pool
- Cancellation

Execution flow for each step:
1. Wait until every step in depends_on completed successfully
   (delete steps also wait for all non-delete steps to finish)
2. Resolve References using outputs of completed steps
3. Deferred updates: skip the provider call if the resolved properties
   match applied state. Unchanged resources whose dependency list moved
   only get their StateRecord dependencies rewritten
4. Call the provider (with retry + timeout)
5. Write the StateRecord (or remove it for deletes) under the run lock
6. Record the StepResult; dependents of a failed step are skipped

Failure semantics:
- Transient errors are retried up to max_attempts, then fail the step
- Permanent errors fail the step immediately
- A failed step skips its transitive dependents only; independent
  branches keep running
- UnresolvedDependencyError is fatal: nothing new is dispatched
- No rollback: the StateStore reflects exactly what succeeded
"""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from infraplan.diff import canonical_json, properties_equal, resolve_references
from infraplan.errors import (
    ApplyError,
    Cancelled,
    UnresolvedDependencyError,
)
from infraplan.providers.base import Provider
from infraplan.schemas import (
    Action,
    PlanStep,
    StateRecord,
    StepResult,
    StepStatus,
)
from infraplan.state_store import StateStore
from infraplan.utils import call_with_timeout, retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_CALL_TIMEOUT_S = 120.0


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ApplyResult:
    """Result of applying a plan."""

    def __init__(self, results: list[StepResult], cancelled: bool = False):
        self.results = results
        self.cancelled = cancelled

    @property
    def success(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def errors(self) -> list[ApplyError]:
        return [r.error for r in self.results if r.error is not None]

    @property
    def first_error(self) -> Optional[ApplyError]:
        """The first error in plan order that is not a knock-on effect of another."""
        for result in self.results:
            if result.status == StepStatus.FAILED:
                return result.error
        errors = self.errors
        return errors[0] if errors else None

    @property
    def failed_steps(self) -> list[StepResult]:
        return [r for r in self.results if r.status == StepStatus.FAILED]

    @property
    def provider_calls(self) -> int:
        """Number of steps that issued a provider operation."""
        return sum(1 for r in self.results if r.provider_called)

    @property
    def outputs(self) -> dict[str, dict[str, Any]]:
        """logical_id -> outputs for every resource that exists after the run."""
        return {
            r.logical_id: r.outputs
            for r in self.results
            if r.ok and r.step.action != Action.DELETE
        }

    def get(self, logical_id: str) -> Optional[StepResult]:
        for result in self.results:
            if result.logical_id == logical_id:
                return result
        return None


class Executor:
    """
    Apply engine for Plans.

    Usage:
        executor = Executor(
            provider=InMemoryProvider(),
            store=InMemoryStateStore(),
            concurrency=4,
        )
        result = executor.apply(plan)

    cancel() may be called from another thread while apply() runs.
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
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the executor.

        Args:
            provider: Provider used for create/update/delete calls
            store: StateStore receiving a record after every success
            concurrency: Maximum number of steps in flight (default: 4)
            max_attempts: Attempts per provider call for transient errors (default: 5)
            backoff_seconds: Initial retry backoff
            backoff_multiplier: Backoff growth factor
            call_timeout_s: Per-call timeout (default: 120s, None disables)
            sleep: Sleep function used between retries (injectable for tests)
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._provider = provider
        self._store = store
        self._concurrency = concurrency
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._backoff_multiplier = backoff_multiplier
        self._call_timeout_s = call_timeout_s
        self._sleep = sleep
        self._cancel_event = threading.Event()
        self._state_lock = threading.Lock()

    def cancel(self) -> None:
        """Stop dispatching new steps. In-flight provider calls finish."""
        logger.warning("Cancellation requested; no new steps will start")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def apply(self, plan: Iterable[PlanStep]) -> ApplyResult:
        """
        Execute plan steps.

        Args:
            plan: A Plan or sequence of PlanSteps, in plan order

        Returns:
            ApplyResult with one StepResult per step, in plan order
        """
        steps = list(plan)
        plan_ids = {s.logical_id for s in steps}
        non_delete_ids = {s.logical_id for s in steps if s.action != Action.DELETE}
        current = self._store.load()

        # Outputs available for reference resolution. Resources outside the
        # plan contribute their last-applied outputs.
        outputs: dict[str, dict[str, Any]] = {
            logical_id: dict(record.outputs)
            for logical_id, record in current.items()
            if logical_id not in plan_ids
        }
        results: dict[str, StepResult] = {}
        fatal: Optional[ApplyError] = None

        logger.info(f"Applying {len(steps)} steps (concurrency={self._concurrency})")

        with ThreadPoolExecutor(
            max_workers=self._concurrency,
            thread_name_prefix="infraplan-apply",
        ) as pool:
            running: dict[Future, PlanStep] = {}
            pending = list(steps)

            while pending or running:
                still_pending: list[PlanStep] = []
                for step in pending:
                    settled = self._settle_without_running(step, results, plan_ids, fatal)
                    if settled is not None:
                        results[step.logical_id] = settled
                        continue

                    ready = all(
                        dep not in plan_ids or dep in results
                        for dep in step.depends_on
                    )
                    if step.action == Action.DELETE:
                        ready = ready and all(i in results for i in non_delete_ids)

                    if ready and len(running) < self._concurrency:
                        future = pool.submit(self._run_step, step, current.get(step.logical_id), dict(outputs))
                        running[future] = step
                    else:
                        still_pending.append(step)
                pending = still_pending

                if not running:
                    if pending:
                        # Nothing in flight and nothing dispatchable: the plan
                        # references steps that can never run.
                        for step in pending:
                            missing = [d for d in step.depends_on if d in plan_ids and d not in results]
                            cause = UnresolvedDependencyError(step.logical_id, missing[0] if missing else "?")
                            results[step.logical_id] = StepResult(
                                step=step,
                                status=StepStatus.SKIPPED,
                                error=ApplyError(step, cause, reason="aborted"),
                            )
                        pending = []
                    break

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    step = running.pop(future)
                    result = future.result()
                    results[step.logical_id] = result
                    if result.ok and step.action != Action.DELETE:
                        outputs[step.logical_id] = result.outputs
                    elif result.ok:
                        outputs.pop(step.logical_id, None)
                    if (
                        result.error is not None
                        and isinstance(result.error.cause, UnresolvedDependencyError)
                        and fatal is None
                    ):
                        logger.error(f"Fatal: {result.error}; aborting remaining plan")
                        fatal = result.error

        ordered = [results[s.logical_id] for s in steps]
        apply_result = ApplyResult(ordered, cancelled=self.cancelled)
        logger.info(
            f"Apply finished: {sum(1 for r in ordered if r.ok)}/{len(ordered)} steps ok, "
            f"{apply_result.provider_calls} provider calls"
        )
        return apply_result

    def _settle_without_running(
        self,
        step: PlanStep,
        results: dict[str, StepResult],
        plan_ids: set[str],
        fatal: Optional[ApplyError],
    ) -> Optional[StepResult]:
        """Return a terminal result for a step that must not run, or None."""
        if fatal is not None:
            return StepResult(
                step=step,
                status=StepStatus.SKIPPED,
                error=ApplyError(step, fatal.cause, reason="aborted"),
            )
        if self.cancelled:
            return StepResult(
                step=step,
                status=StepStatus.CANCELLED,
                error=ApplyError(step, Cancelled("apply run cancelled"), reason="cancelled"),
            )
        for dep in step.depends_on:
            if dep in plan_ids and dep in results and not results[dep].ok:
                return StepResult(
                    step=step,
                    status=StepStatus.SKIPPED,
                    error=ApplyError(
                        step,
                        results[dep].error,
                        reason=f"dependency_failed ({dep})",
                    ),
                )
        return None

    def _call_provider(self, description: str, func: Callable[[], Any], tally: dict[str, int]) -> Any:
        """Call the provider with timeout and retry, counting attempts in tally."""

        def attempt() -> Any:
            tally["attempts"] += 1
            return call_with_timeout(func, self._call_timeout_s, description)

        return retry_with_backoff(
            attempt,
            max_attempts=self._max_attempts,
            backoff_seconds=self._backoff_seconds,
            backoff_multiplier=self._backoff_multiplier,
            logger=logger,
            sleep=self._sleep,
        )

    def _refresh_dependencies(self, step: PlanStep, record: Optional[StateRecord]) -> None:
        """Rewrite the stored dependency list of an unchanged resource if it went stale."""
        dependencies = tuple(step.resource.dependency_ids())
        if record is None or tuple(record.dependencies) == dependencies:
            return
        with self._state_lock:
            self._store.put(replace(record, dependencies=dependencies))
        logger.info(
            f"Refreshed dependencies of {step.logical_id}: {list(dependencies)}",
            extra={"logical_id": step.logical_id, "action": step.action.value},
        )

    def _run_step(
        self,
        step: PlanStep,
        record: Optional[StateRecord],
        outputs: dict[str, dict[str, Any]],
    ) -> StepResult:
        """
        Execute a single step. Never raises; failures become StepResults.

        Args:
            step: The step to execute
            record: Current StateRecord for the resource (None if absent)
            outputs: Outputs of completed dependencies

        Returns:
            StepResult
        """
        started_at = _utcnow()
        logical_id = step.logical_id
        tally = {"attempts": 0}
        log_extra = {"logical_id": logical_id, "action": step.action.value}

        try:
            if step.action == Action.NOOP:
                self._refresh_dependencies(step, record)
                return StepResult(
                    step=step,
                    status=StepStatus.COMPLETED,
                    outputs=dict(record.outputs) if record else {},
                    started_at=started_at,
                    completed_at=_utcnow(),
                )

            if step.action == Action.DELETE:
                if record is not None:
                    self._call_provider(
                        f"delete {logical_id}",
                        lambda: self._provider.delete(record.provider_id),
                        tally,
                    )
                    with self._state_lock:
                        self._store.remove(logical_id)
                logger.info(f"Deleted {logical_id}", extra=log_extra)
                return StepResult(
                    step=step,
                    status=StepStatus.COMPLETED,
                    provider_called=tally["attempts"] > 0,
                    attempts=tally["attempts"],
                    started_at=started_at,
                    completed_at=_utcnow(),
                )

            resolved = resolve_references(step.resource.properties, outputs, logical_id)

            if (
                step.deferred
                and record is not None
                and record.kind == step.kind
                and properties_equal(resolved, record.applied_properties)
            ):
                logger.info(f"Unchanged after resolution: {logical_id}", extra=log_extra)
                self._refresh_dependencies(step, record)
                return StepResult(
                    step=step,
                    status=StepStatus.COMPLETED,
                    outputs=dict(record.outputs),
                    started_at=started_at,
                    completed_at=_utcnow(),
                )

            # rejects values the state store cannot persist
            canonical_json(resolved)

            if record is None:
                provider_id, new_outputs = self._call_provider(
                    f"create {logical_id}",
                    lambda: self._provider.create(step.kind, resolved),
                    tally,
                )
            else:
                provider_id = record.provider_id
                new_outputs = self._call_provider(
                    f"update {logical_id}",
                    lambda: self._provider.update(provider_id, resolved),
                    tally,
                )

            new_record = StateRecord(
                logical_id=logical_id,
                kind=step.kind,
                applied_properties=resolved,
                provider_id=provider_id,
                last_applied_at=_utcnow(),
                outputs=dict(new_outputs or {}),
                dependencies=tuple(step.resource.dependency_ids()),
            )
            with self._state_lock:
                self._store.put(new_record)

            verb = "Created" if record is None else "Updated"
            logger.info(f"{verb} {logical_id} ({provider_id})", extra=log_extra)
            return StepResult(
                step=step,
                status=StepStatus.COMPLETED,
                outputs=new_record.outputs,
                provider_called=True,
                attempts=tally["attempts"],
                started_at=started_at,
                completed_at=_utcnow(),
            )

        except Exception as e:
            error = ApplyError(step, e)
            logger.error(str(error), extra=log_extra)
            return StepResult(
                step=step,
                status=StepStatus.FAILED,
                error=error,
                provider_called=tally["attempts"] > 0,
                attempts=tally["attempts"],
                started_at=started_at,
                completed_at=_utcnow(),
            )
