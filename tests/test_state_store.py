"""Tests for state stores and run history."""

import json
import threading
from datetime import datetime, timezone

import pytest

from infraplan.schemas import StateRecord
from infraplan.state_store import (
    FileStateStore,
    InMemoryStateStore,
    generate_ulid,
)


def _record(logical_id: str, **overrides) -> StateRecord:
    data = {
        "logical_id": logical_id,
        "kind": "test.thing",
        "applied_properties": {"name": logical_id},
        "provider_id": f"thing-{logical_id}",
        "last_applied_at": datetime(2026, 5, 1, tzinfo=timezone.utc),
        "outputs": {"id": f"thing-{logical_id}"},
    }
    data.update(overrides)
    return StateRecord(**data)


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStateStore()
    return FileStateStore(tmp_path / "state")


class TestStateStoreContract:
    """Behavior shared by every StateStore."""

    def test_empty(self, any_store):
        assert any_store.load() == {}
        assert any_store.get("a") is None

    def test_put_get_replace(self, any_store):
        any_store.put(_record("a"))
        any_store.put(_record("a", applied_properties={"name": "changed"}))

        assert any_store.get("a").applied_properties == {"name": "changed"}
        assert list(any_store.load()) == ["a"]

    def test_remove(self, any_store):
        any_store.put(_record("a"))
        any_store.put(_record("b"))
        any_store.remove("a")
        any_store.remove("missing")

        assert list(any_store.load()) == ["b"]

    def test_concurrent_puts_all_recorded(self, any_store):
        threads = [
            threading.Thread(target=any_store.put, args=(_record(f"r{i}"),))
            for i in range(20)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(any_store.load()) == 20

    def test_runs(self, any_store):
        run = any_store.create_run("apply")
        run.status = "success"
        run.completed_at = datetime.now(timezone.utc)
        any_store.store_run(run)

        restored = any_store.get_run(run.run_id)
        assert restored.status == "success"
        assert restored.command == "apply"
        assert any_store.get_latest_run().run_id == run.run_id
        assert any_store.get_run("nope") is None

    def test_no_runs(self, any_store):
        assert any_store.list_runs() == []
        assert any_store.get_latest_run() is None


class TestFileStateStore:
    """File layout and persistence."""

    def test_persists_across_instances(self, tmp_path):
        FileStateStore(tmp_path).put(_record("a", dependencies=("b",)))

        record = FileStateStore(tmp_path).get("a")

        assert record.dependencies == ("b",)
        assert record.outputs == {"id": "thing-a"}

    def test_state_file_format(self, tmp_path):
        store = FileStateStore(tmp_path)
        store.put(_record("a"))

        data = json.loads(store.state_path.read_text())

        assert data["version"] == 1
        assert [r["logical_id"] for r in data["resources"]] == ["a"]

    def test_no_temp_files_left(self, tmp_path):
        store = FileStateStore(tmp_path)
        store.put(_record("a"))
        store.put(_record("b"))

        assert sorted(p.name for p in tmp_path.iterdir()) == ["runs", "state.json"]

    def test_run_files(self, tmp_path):
        store = FileStateStore(tmp_path)
        run = store.create_run("destroy")

        assert (tmp_path / "runs" / f"{run.run_id}.json").exists()
        assert [r.run_id for r in store.list_runs()] == [run.run_id]


class TestInMemoryStateStore:

    def test_clear(self):
        store = InMemoryStateStore()
        store.put(_record("a"))
        store.create_run("apply")

        store.clear()

        assert store.load() == {}
        assert store.list_runs() == []


class TestULIDGeneration:
    """Tests for ULID generation."""

    def test_ulid_format(self):
        ulid = generate_ulid()
        assert len(ulid) == 26
        assert all(c in "0123456789ABCDEFGHJKMNPQRSTVWXYZ" for c in ulid)

    def test_ulids_unique(self):
        assert len({generate_ulid() for _ in range(100)}) == 100
