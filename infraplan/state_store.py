"""
StateStore - Persist last-applied resource state and run history.

The StateStore manages:
- StateRecords (one per applied resource, keyed by logical id)
- ApplyRuns (history of apply/destroy invocations)

Storage backends:
- In-memory (for testing)
- File-based (state.json written atomically, one JSON file per run)

Writes are whole-set read-modify-write operations guarded by a lock, so
concurrent writers from parallel branches never interleave partial writes.
"""

import json
import os
import random
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from infraplan.schemas import ApplyRun, StateRecord

STATE_FILE = "state.json"
STATE_VERSION = 1


def generate_ulid() -> str:
    """
    Generate a ULID (Universally Unique Lexicographically Sortable Identifier).

    ULIDs are 26 characters, encoding:
    - 48 bits of timestamp (milliseconds since Unix epoch)
    - 80 bits of randomness
    """
    # Crockford's Base32 alphabet (excludes I, L, O, U)
    ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = []
    for _ in range(10):
        timestamp_chars.append(ALPHABET[timestamp_ms & 0x1F])
        timestamp_ms >>= 5
    timestamp_part = "".join(reversed(timestamp_chars))

    random_part = "".join(random.choice(ALPHABET) for _ in range(16))

    return timestamp_part + random_part


class StateStore(ABC):
    """
    Abstract base class for state storage.

    Implementations must provide methods to:
    - Load, write, and remove StateRecords
    - Create and retrieve ApplyRun history
    """

    @abstractmethod
    def load(self) -> dict[str, StateRecord]:
        """
        Load all state records.

        Returns:
            logical_id -> StateRecord, in the order records were first written
        """
        pass

    def get(self, logical_id: str) -> Optional[StateRecord]:
        """Retrieve a single record by logical id."""
        return self.load().get(logical_id)

    @abstractmethod
    def put(self, record: StateRecord) -> None:
        """
        Insert or replace a state record.

        Args:
            record: The StateRecord to write
        """
        pass

    @abstractmethod
    def remove(self, logical_id: str) -> None:
        """
        Remove a state record. Removing an unknown id is a no-op.

        Args:
            logical_id: The logical id to remove
        """
        pass

    @abstractmethod
    def create_run(self, command: str) -> ApplyRun:
        """
        Create a new run record.

        Args:
            command: "apply" or "destroy"

        Returns:
            The created ApplyRun with a new ULID
        """
        pass

    @abstractmethod
    def store_run(self, run: ApplyRun) -> None:
        """Store or update a run record."""
        pass

    @abstractmethod
    def get_run(self, run_id: str) -> Optional[ApplyRun]:
        """Retrieve a run record by ID."""
        pass

    @abstractmethod
    def list_runs(self) -> list[ApplyRun]:
        """All run records, oldest first."""
        pass

    def get_latest_run(self) -> Optional[ApplyRun]:
        """Most recent run, or None if no runs exist."""
        runs = self.list_runs()
        return runs[-1] if runs else None


class InMemoryStateStore(StateStore):
    """
    In-memory implementation of StateStore for testing.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self):
        self._records: dict[str, StateRecord] = {}
        self._runs: dict[str, ApplyRun] = {}
        self._lock = threading.Lock()

    def load(self) -> dict[str, StateRecord]:
        with self._lock:
            return dict(self._records)

    def put(self, record: StateRecord) -> None:
        with self._lock:
            self._records[record.logical_id] = record

    def remove(self, logical_id: str) -> None:
        with self._lock:
            self._records.pop(logical_id, None)

    def create_run(self, command: str) -> ApplyRun:
        run = ApplyRun(
            run_id=generate_ulid(),
            command=command,
            started_at=datetime.now(timezone.utc),
        )
        self.store_run(run)
        return run

    def store_run(self, run: ApplyRun) -> None:
        with self._lock:
            self._runs[run.run_id] = run

    def get_run(self, run_id: str) -> Optional[ApplyRun]:
        return self._runs.get(run_id)

    def list_runs(self) -> list[ApplyRun]:
        return sorted(self._runs.values(), key=lambda r: r.run_id)

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        with self._lock:
            self._records.clear()
            self._runs.clear()


class FileStateStore(StateStore):
    """
    File-based implementation of StateStore.

    Stores state as JSON files in a directory tree:
        state_dir/
            state.json
            runs/
                {run_id}.json

    state.json is always rewritten whole via a temp file and os.replace,
    so readers never observe a partially written file.
    """

    def __init__(self, state_dir: Path | str):
        self._state_dir = Path(state_dir).expanduser()
        self._lock = threading.Lock()
        self._ensure_dirs()

    @property
    def state_path(self) -> Path:
        return self._state_dir / STATE_FILE

    def _ensure_dirs(self) -> None:
        """Create the directory structure if needed."""
        (self._state_dir / "runs").mkdir(parents=True, exist_ok=True)

    def _write_json(self, path: Path, data: dict) -> None:
        """Atomically replace path with data."""
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _read_records(self) -> dict[str, StateRecord]:
        if not self.state_path.exists():
            return {}
        with open(self.state_path) as f:
            data = json.load(f)
        return {
            entry["logical_id"]: StateRecord.from_dict(entry)
            for entry in data.get("resources", [])
        }

    def _write_records(self, records: dict[str, StateRecord]) -> None:
        self._write_json(self.state_path, {
            "version": STATE_VERSION,
            "resources": [r.to_dict() for r in records.values()],
        })

    def load(self) -> dict[str, StateRecord]:
        with self._lock:
            return self._read_records()

    def put(self, record: StateRecord) -> None:
        with self._lock:
            records = self._read_records()
            records[record.logical_id] = record
            self._write_records(records)

    def remove(self, logical_id: str) -> None:
        with self._lock:
            records = self._read_records()
            if records.pop(logical_id, None) is not None:
                self._write_records(records)

    def create_run(self, command: str) -> ApplyRun:
        run = ApplyRun(
            run_id=generate_ulid(),
            command=command,
            started_at=datetime.now(timezone.utc),
        )
        self.store_run(run)
        return run

    def store_run(self, run: ApplyRun) -> None:
        self._write_json(self._state_dir / "runs" / f"{run.run_id}.json", run.to_dict())

    def get_run(self, run_id: str) -> Optional[ApplyRun]:
        run_path = self._state_dir / "runs" / f"{run_id}.json"
        if not run_path.exists():
            return None
        with open(run_path) as f:
            data = json.load(f)
        return ApplyRun.from_dict(data)

    def list_runs(self) -> list[ApplyRun]:
        run_files = sorted((self._state_dir / "runs").glob("*.json"))
        runs = []
        for run_file in run_files:
            with open(run_file) as f:
                runs.append(ApplyRun.from_dict(json.load(f)))
        return runs
