import threading
import time
from contextlib import contextmanager

import pytest

from infraplan.providers import InMemoryProvider
from infraplan.schemas import Reference, ResourceSet
from infraplan.state_store import InMemoryStateStore


class ScriptedProvider(InMemoryProvider):
    """
    InMemoryProvider with failure injection.

    Failures and hooks are keyed by (operation, kind). For update and
    delete the kind is looked up from the provider id.
    """

    def __init__(self, delay: float = 0.0):
        super().__init__()
        self.delay = delay
        self.failures: dict[tuple[str, str], list[BaseException]] = {}
        self.hooks: dict[tuple[str, str], object] = {}
        self.attempts: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._track = threading.Lock()

    def fail(self, op: str, kind: str, *errors: BaseException) -> None:
        """Queue errors raised by the next calls of op on kind."""
        self.failures.setdefault((op, kind), []).extend(errors)

    def on(self, op: str, kind: str, hook) -> None:
        """Run hook() at the start of every op call on kind."""
        self.hooks[(op, kind)] = hook

    def kind_of(self, provider_id: str) -> str:
        entry = self.resources.get(provider_id)
        return entry["kind"] if entry else provider_id

    @contextmanager
    def _call(self, op: str, kind: str):
        with self._track:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.attempts.append((op, kind))
        try:
            hook = self.hooks.get((op, kind))
            if hook is not None:
                hook()
            if self.delay:
                time.sleep(self.delay)
            queued = self.failures.get((op, kind))
            if queued:
                raise queued.pop(0)
            yield
        finally:
            with self._track:
                self.in_flight -= 1

    def create(self, kind, properties):
        with self._call("create", kind):
            return super().create(kind, properties)

    def update(self, provider_id, properties):
        with self._call("update", self.kind_of(provider_id)):
            return super().update(provider_id, properties)

    def delete(self, provider_id):
        with self._call("delete", self.kind_of(provider_id)):
            return super().delete(provider_id)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested backoff delays."""
    delays: list[float] = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def chain() -> ResourceSet:
    """a <- b (by reference) and c independent."""
    resources = ResourceSet()
    resources.declare("test.a", "a", {"size": 1})
    resources.declare("test.b", "b", {"parent": Reference("a", "id")})
    resources.declare("test.c", "c", {"name": "c"})
    return resources
