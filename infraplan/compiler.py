"""
Compiler - Transform raw declaration documents + stage settings into a ResourceSet.

The compiler resolves:
- @ctx.* references from the stage settings (load time)
- @ref.<id>.<attr> strings into Reference values (resolved at apply time)

The resulting ResourceSet has:
- Resources in declaration order (file order, then position in file)
- No @ctx.* strings left anywhere in the property bags
- Declaration outputs mapped to References
"""

import re
from datetime import date, datetime
from typing import Any, Iterable, Optional

from infraplan.errors import DeclarationError
from infraplan.schemas import REF_PREFIX, Reference, ResourceSet


# Reference pattern: @namespace.path.to.value
# Namespace is one of: ctx, ref
REF_PATTERN = re.compile(r"@(ctx|ref)\.([a-zA-Z_][a-zA-Z0-9_.\-]*)$")

RESOURCE_KEYS = {"id", "kind", "properties", "depends_on"}


def _field(mapping: dict[str, Any], key: str, default: Any) -> Any:
    """Value of key, with an explicit null treated like a missing key."""
    value = mapping.get(key)
    return default if value is None else value


def _resolve_ctx(ref: str, ctx: dict[str, Any]) -> Any:
    """
    Resolve a single @ctx.* reference.

    Raises:
        DeclarationError: If the path is missing from ctx
    """
    path = ref[len("@ctx."):]
    value: Any = ctx
    for part in path.split("."):
        if isinstance(value, dict):
            if part not in value:
                raise DeclarationError(f"Setting not found: {ref} (missing '{part}')")
            value = value[part]
        else:
            raise DeclarationError(f"Cannot navigate into non-dict at '{part}' in {ref}")
    return value


def _scalar(value: Any) -> Any:
    """Check a non-container value can be stored as JSON."""
    if isinstance(value, (date, datetime)):
        # YAML timestamps
        return value.isoformat()
    if value is not None and not isinstance(value, (str, bool, int, float)):
        raise DeclarationError(f"Unsupported property value of type {type(value).__name__}: {value!r}")
    return value


def _plain_setting(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _plain_setting(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [_plain_setting(v) for v in value]
    return _scalar(value)


def compile_value(value: Any, ctx: dict[str, Any]) -> Any:
    """
    Recursively compile a property value.

    Only full-string references are recognized; "prefix-@ctx.x" stays a
    literal string.

    Args:
        value: The value to compile (may be str, dict, list, or primitive)
        ctx: Stage settings for @ctx.* resolution

    Returns:
        The compiled value

    Raises:
        DeclarationError: If a reference is malformed or a setting is missing
    """
    if isinstance(value, str):
        if value.startswith("@"):
            match = REF_PATTERN.match(value)
            if match:
                if match.group(1) == "ctx":
                    return _plain_setting(_resolve_ctx(value, ctx))
                try:
                    return Reference.parse(value)
                except ValueError as e:
                    raise DeclarationError(str(e))
            if value.startswith(REF_PREFIX):
                raise DeclarationError(
                    f"Invalid reference '{value}': expected @ref.<logical_id>.<attribute>"
                )
        return value
    elif isinstance(value, dict):
        return {k: compile_value(v, ctx) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [compile_value(v, ctx) for v in value]
    return _scalar(value)


def _compile_resource(raw: Any, ctx: dict[str, Any], source: str, position: int) -> dict[str, Any]:
    where = f"{source} resources[{position}]"
    if not isinstance(raw, dict):
        raise DeclarationError(f"{where}: expected a mapping, got {type(raw).__name__}")

    unknown = sorted(set(raw) - RESOURCE_KEYS)
    if unknown:
        raise DeclarationError(f"{where}: unknown keys {unknown}")
    for key in ("id", "kind"):
        if not isinstance(raw.get(key), str) or not raw.get(key):
            raise DeclarationError(f"{where}: '{key}' is required")

    properties = _field(raw, "properties", {})
    if not isinstance(properties, dict):
        raise DeclarationError(f"{where}: 'properties' must be a mapping")

    depends_on = _field(raw, "depends_on", [])
    if isinstance(depends_on, str):
        depends_on = [depends_on]
    if not isinstance(depends_on, list) or not all(isinstance(d, str) for d in depends_on):
        raise DeclarationError(f"{where}: 'depends_on' must be a list of logical ids")

    return {
        "kind": raw["kind"],
        "logical_id": raw["id"],
        "properties": compile_value(properties, ctx),
        "depends_on": depends_on,
    }


def compile_documents(
    documents: Iterable[tuple[str, dict[str, Any]]],
    ctx: Optional[dict[str, Any]] = None,
) -> ResourceSet:
    """
    Compile declaration documents into a ResourceSet.

    Args:
        documents: (source name, parsed document) pairs in load order
        ctx: Stage settings for @ctx.* resolution

    Returns:
        ResourceSet with resources and outputs

    Raises:
        DeclarationError: If a document is malformed or an output is defined twice
        DuplicateIdError: If a logical id is declared twice
    """
    ctx = ctx or {}
    resources = ResourceSet()
    output_sources: dict[str, str] = {}

    for source, document in documents:
        if not isinstance(document, dict):
            raise DeclarationError(f"{source}: expected a mapping at top level")

        unknown = sorted(set(document) - {"resources", "outputs"})
        if unknown:
            raise DeclarationError(f"{source}: unknown top-level keys {unknown}")

        raw_resources = _field(document, "resources", [])
        if not isinstance(raw_resources, list):
            raise DeclarationError(f"{source}: 'resources' must be a list")

        for position, raw in enumerate(raw_resources):
            compiled = _compile_resource(raw, ctx, source, position)
            resources.declare(**compiled)

        raw_outputs = _field(document, "outputs", {})
        if not isinstance(raw_outputs, dict):
            raise DeclarationError(f"{source}: 'outputs' must be a mapping")

        for name, value in raw_outputs.items():
            if name in output_sources:
                raise DeclarationError(
                    f"{source}: output '{name}' already defined in {output_sources[name]}"
                )
            compiled_output = compile_value(value, ctx)
            if not isinstance(compiled_output, Reference):
                raise DeclarationError(
                    f"{source}: output '{name}' must be an @ref.<logical_id>.<attribute> reference"
                )
            resources.outputs[name] = compiled_output
            output_sources[name] = source

    return resources
