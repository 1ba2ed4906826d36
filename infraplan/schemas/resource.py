"""
Resource model - declared resources and the references between them.

A Resource is a plain value: kind, logical id, property bag, and explicit
dependencies. Provider-specific behavior never lives on the resource; it
sits behind the Provider interface.

Property values are literals (str, int, float, bool, None, nested lists
and dicts) or Reference values pointing at another resource's output.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional

from infraplan.errors import DuplicateIdError

REF_PREFIX = "@ref."


@dataclass(frozen=True)
class Reference:
    """
    Pointer to an output attribute of another resource.

    Attributes:
        logical_id: Logical id of the referenced resource
        attribute: Output attribute name (e.g. "domain_name")
    """
    logical_id: str
    attribute: str

    def __str__(self) -> str:
        return f"{REF_PREFIX}{self.logical_id}.{self.attribute}"

    @classmethod
    def parse(cls, value: str) -> "Reference":
        """Parse "@ref.<logical_id>.<attribute>" into a Reference."""
        if not value.startswith(REF_PREFIX):
            raise ValueError(f"Not a reference: {value}")
        body = value[len(REF_PREFIX):]
        logical_id, sep, attribute = body.partition(".")
        if not logical_id or not sep or not attribute:
            raise ValueError(
                f"Invalid reference '{value}': expected @ref.<logical_id>.<attribute>"
            )
        return cls(logical_id=logical_id, attribute=attribute)


def iter_references(value: Any) -> Iterator[Reference]:
    """Yield every Reference found in a (possibly nested) property value."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, dict):
        for v in value.values():
            yield from iter_references(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from iter_references(v)


def to_plain(value: Any) -> Any:
    """Replace References with their string form (for display and JSON output)."""
    if isinstance(value, Reference):
        return str(value)
    elif isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class Resource:
    """
    A declared resource.

    Attributes:
        kind: Provider resource kind (e.g. "cdn.distribution")
        logical_id: Identifier unique within a declaration set
        properties: Property bag, may contain Reference values
        depends_on: Explicit dependencies in addition to references
    """
    kind: str
    logical_id: str
    properties: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.kind:
            raise ValueError("Resource kind is required")
        if not self.logical_id:
            raise ValueError("Resource logical_id is required")

    def references(self) -> list[Reference]:
        """All references in the property bag, in traversal order."""
        return list(iter_references(self.properties))

    def dependency_ids(self) -> list[str]:
        """Logical ids this resource depends on (references then depends_on), deduplicated."""
        seen: list[str] = []
        for ref in self.references():
            if ref.logical_id not in seen:
                seen.append(ref.logical_id)
        for dep in self.depends_on:
            if dep not in seen:
                seen.append(dep)
        return seen

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "id": self.logical_id,
            "kind": self.kind,
            "properties": to_plain(self.properties),
        }
        if self.depends_on:
            result["depends_on"] = list(self.depends_on)
        return result


class ResourceSet:
    """
    An ordered declaration set.

    Declaration order is preserved; the planner uses it as the tie-break
    between resources with no ordering constraint.

    Usage:
        resources = ResourceSet()
        vpc = resources.declare("network.vpc", "apiVpc", {"max_azs": 2})
        resources.declare(
            "container.cluster", "apiCluster",
            {"vpc_id": Reference("apiVpc", "vpc_id")},
        )
    """

    def __init__(self, resources: Optional[Iterable[Resource]] = None):
        self._resources: dict[str, Resource] = {}
        self.outputs: dict[str, Reference] = {}
        for resource in resources or ():
            self.add(resource)

    def declare(
        self,
        kind: str,
        logical_id: str,
        properties: Optional[dict[str, Any]] = None,
        depends_on: Iterable[str] = (),
    ) -> Resource:
        """
        Declare a new resource in this set.

        Raises:
            DuplicateIdError: If logical_id is already declared
        """
        resource = Resource(
            kind=kind,
            logical_id=logical_id,
            properties=dict(properties or {}),
            depends_on=tuple(depends_on),
        )
        return self.add(resource)

    def add(self, resource: Resource) -> Resource:
        """Add an existing Resource, enforcing logical id uniqueness."""
        if resource.logical_id in self._resources:
            raise DuplicateIdError(resource.logical_id)
        self._resources[resource.logical_id] = resource
        return resource

    def get(self, logical_id: str) -> Optional[Resource]:
        return self._resources.get(logical_id)

    def ids(self) -> list[str]:
        return list(self._resources)

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, logical_id: object) -> bool:
        return logical_id in self._resources

    def __repr__(self) -> str:
        return f"ResourceSet(resources={len(self._resources)}, outputs={len(self.outputs)})"
