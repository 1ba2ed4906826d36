"""
Simulated providers.

InMemoryProvider keeps resources in a dict and is used by tests and for
trying declarations without touching a real cloud. LocalProvider is the
same simulation persisted to a JSON file so that resources survive between
CLI invocations.

Outputs echo the literal properties of the resource plus three generated
attributes: id, arn, and domain_name.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any

from infraplan.errors import ProviderRejected
from infraplan.providers.base import Outputs, Provider

logger = logging.getLogger(__name__)


class InMemoryProvider(Provider):
    """
    In-process provider for testing and dry experiments.

    Attributes:
        resources: provider_id -> {"kind": ..., "properties": ...}
        calls: Log of (operation, target) tuples, in call order
    """

    name = "memory"

    def __init__(self, resources: dict[str, dict[str, Any]] | None = None):
        self.resources: dict[str, dict[str, Any]] = dict(resources or {})
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()
        self._counter = max(
            (int(pid.rsplit("-", 1)[-1]) for pid in self.resources if pid.rsplit("-", 1)[-1].isdigit()),
            default=0,
        )

    def _outputs(self, provider_id: str) -> Outputs:
        entry = self.resources[provider_id]
        kind = entry["kind"]
        outputs: Outputs = dict(entry["properties"])
        outputs.update({
            "id": provider_id,
            "arn": f"arn:infraplan:{kind}:{provider_id}",
            "domain_name": f"{provider_id}.{kind.replace('.', '-')}.infraplan.local",
        })
        return outputs

    def _changed(self) -> None:
        """Hook for subclasses that persist resources."""
        pass

    def create(self, kind: str, properties: dict[str, Any]) -> tuple[str, Outputs]:
        with self._lock:
            self._counter += 1
            provider_id = f"{kind.split('.')[-1]}-{self._counter:06d}"
            self.resources[provider_id] = {"kind": kind, "properties": dict(properties)}
            self.calls.append(("create", kind))
            self._changed()
            logger.debug(f"Created {kind} as {provider_id}")
            return provider_id, self._outputs(provider_id)

    def update(self, provider_id: str, properties: dict[str, Any]) -> Outputs:
        with self._lock:
            self.calls.append(("update", provider_id))
            if provider_id not in self.resources:
                raise ProviderRejected(f"Resource not found: {provider_id}")
            self.resources[provider_id]["properties"] = dict(properties)
            self._changed()
            return self._outputs(provider_id)

    def delete(self, provider_id: str) -> None:
        with self._lock:
            self.calls.append(("delete", provider_id))
            if provider_id not in self.resources:
                raise ProviderRejected(f"Resource not found: {provider_id}")
            del self.resources[provider_id]
            self._changed()


class LocalProvider(InMemoryProvider):
    """
    InMemoryProvider persisted to a JSON file.

    Usage:
        provider = LocalProvider("~/.config/infraplan/local-cloud.json")
    """

    name = "local"

    def __init__(self, path: Path | str):
        self._path = Path(path).expanduser()
        resources: dict[str, dict[str, Any]] = {}
        if self._path.exists():
            with open(self._path) as f:
                resources = json.load(f).get("resources", {})
        super().__init__(resources)

    @property
    def path(self) -> Path:
        return self._path

    def _changed(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump({"resources": self.resources}, f, indent=2)
        tmp_path.replace(self._path)
