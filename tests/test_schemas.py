"""Tests for infraplan schemas: resources, plans, results, and state records."""

from datetime import datetime, timedelta, timezone

import pytest

from infraplan.errors import ApplyError, DuplicateIdError
from infraplan.schemas import (
    Action,
    ApplyRun,
    Plan,
    PlanStep,
    Reference,
    Resource,
    ResourceSet,
    StateRecord,
    StepResult,
    StepStatus,
    iter_references,
    to_plain,
)


# =============================================================================
# RESOURCE MODEL
# =============================================================================


class TestReference:

    def test_parse(self):
        ref = Reference.parse("@ref.websiteBucket.domain_name")
        assert ref == Reference("websiteBucket", "domain_name")
        assert str(ref) == "@ref.websiteBucket.domain_name"

    def test_parse_keeps_dotted_attribute(self):
        assert Reference.parse("@ref.a.b.c").attribute == "b.c"

    @pytest.mark.parametrize("value", ["@ref.", "@ref.bucket", "@ref..id", "bucket.id"])
    def test_parse_invalid(self, value):
        with pytest.raises(ValueError):
            Reference.parse(value)


class TestResource:

    def test_dependency_ids_deduplicated(self):
        resource = Resource(
            "cdn.distribution", "cdn",
            {
                "origin": Reference("bucket", "domain_name"),
                "oai": Reference("oai", "id"),
                "logging": {"bucket": Reference("bucket", "arn")},
            },
            depends_on=("policy", "oai"),
        )

        assert resource.dependency_ids() == ["bucket", "oai", "policy"]

    def test_references_nested(self):
        value = {"a": [Reference("x", "id"), {"b": Reference("y", "arn")}], "c": 1}
        assert list(iter_references(value)) == [Reference("x", "id"), Reference("y", "arn")]

    def test_to_plain(self):
        assert to_plain({"a": [Reference("x", "id")]}) == {"a": ["@ref.x.id"]}

    def test_required_fields(self):
        with pytest.raises(ValueError):
            Resource("", "a")
        with pytest.raises(ValueError):
            Resource("test.a", "")

    def test_to_dict(self):
        resource = Resource("test.b", "b", {"p": Reference("a", "id")}, depends_on=("c",))
        assert resource.to_dict() == {
            "id": "b",
            "kind": "test.b",
            "properties": {"p": "@ref.a.id"},
            "depends_on": ["c"],
        }


class TestResourceSet:

    def test_declare_preserves_order(self):
        resources = ResourceSet()
        resources.declare("test.z", "z")
        resources.declare("test.a", "a")

        assert resources.ids() == ["z", "a"]
        assert len(resources) == 2
        assert "a" in resources
        assert resources.get("z").kind == "test.z"

    def test_duplicate_rejected(self):
        resources = ResourceSet()
        resources.declare("test.a", "a")

        with pytest.raises(DuplicateIdError):
            resources.declare("test.other", "a")
        assert len(resources) == 1


# =============================================================================
# PLAN
# =============================================================================


def _step(logical_id, action, **kwargs) -> PlanStep:
    return PlanStep(resource=Resource("test.thing", logical_id), action=action, **kwargs)


class TestPlan:

    def test_counts_and_changes(self):
        plan = Plan(steps=(
            _step("a", Action.CREATE),
            _step("b", Action.NOOP),
            _step("c", Action.DELETE),
        ))

        assert plan.counts() == {"create": 1, "update": 0, "delete": 1, "noop": 1}
        assert [s.logical_id for s in plan.changes()] == ["a", "c"]
        assert plan.has_changes

    def test_all_noop_has_no_changes(self):
        plan = Plan(steps=(_step("a", Action.NOOP),))
        assert not plan.has_changes

    def test_duplicate_steps_rejected(self):
        with pytest.raises(ValueError, match="Duplicate plan steps"):
            Plan(steps=(_step("a", Action.CREATE), _step("a", Action.UPDATE)))

    def test_step_to_dict(self):
        step = _step("b", Action.UPDATE, reason="deferred", depends_on=("a",), deferred=True)
        assert step.to_dict() == {
            "logical_id": "b",
            "kind": "test.thing",
            "action": "update",
            "reason": "deferred",
            "depends_on": ["a"],
            "deferred": True,
        }

    def test_action_symbols(self):
        assert [a.symbol for a in Action] == ["+", "~", "-", "="]
        assert not Action.NOOP.calls_provider


# =============================================================================
# RESULTS
# =============================================================================


class TestStepResult:

    def test_completed_requires_timestamps(self):
        with pytest.raises(ValueError):
            StepResult(step=_step("a", Action.CREATE), status=StepStatus.COMPLETED)

    def test_failed_requires_error(self):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValueError):
            StepResult(
                step=_step("a", Action.CREATE),
                status=StepStatus.FAILED,
                started_at=now,
                completed_at=now,
            )

    def test_skipped_without_timestamps(self):
        step = _step("a", Action.CREATE)
        result = StepResult(
            step=step,
            status=StepStatus.SKIPPED,
            error=ApplyError(step, reason="dependency_failed (x)"),
        )

        assert not result.ok
        assert result.duration_ms is None
        assert result.to_dict()["error"]["reason"] == "dependency_failed (x)"

    def test_duration(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        result = StepResult(
            step=_step("a", Action.CREATE),
            status=StepStatus.COMPLETED,
            started_at=start,
            completed_at=start + timedelta(seconds=1.5),
        )

        assert result.duration_ms == 1500
        assert result.to_dict()["status"] == "completed"


class TestStateRecord:

    def test_round_trip(self):
        record = StateRecord(
            logical_id="cdn",
            kind="cdn.distribution",
            applied_properties={"origin": "bucket.example"},
            provider_id="distribution-000007",
            last_applied_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
            outputs={"domain_name": "d1.example"},
            dependencies=("bucket", "oai"),
        )

        assert StateRecord.from_dict(record.to_dict()) == record

    def test_from_dict_defaults(self):
        record = StateRecord.from_dict({
            "logical_id": "a",
            "kind": "test.a",
            "provider_id": "a-1",
            "last_applied_at": "2026-01-01T00:00:00+00:00",
        })

        assert record.outputs == {}
        assert record.dependencies == ()


class TestApplyRun:

    def test_round_trip(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        run = ApplyRun(
            run_id="01HZY0000000000000000000AB",
            command="apply",
            started_at=start,
            completed_at=start + timedelta(seconds=2),
            status="success",
            results=[{"logical_id": "a", "status": "completed"}],
            outputs={"cdnDomain": "d1.example"},
        )

        restored = ApplyRun.from_dict(run.to_dict())

        assert restored == run
        assert restored.duration_ms == 2000
