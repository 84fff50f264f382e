"""Attribute references between resource nodes.

A configuration value is either a literal or an ``AttributeReference`` to
another node's output attribute.  References may be nested anywhere inside
lists and dicts.  The helpers here walk and substitute them as pure
functions; nothing is inferred at runtime from attribute access.

On the wire (plan files, YAML) a reference is the single-key mapping
``{"$ref": "node_id.attribute"}``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

REF_KEY = "$ref"

# Stand-in for values that only exist once a producer has been applied.
UNKNOWN = "(known after apply)"


class AttributeReference(BaseModel):
    """Pointer to ``attribute`` in the outputs of node ``node_id``."""

    model_config = ConfigDict(frozen=True)

    node_id: str = Field(min_length=1)
    attribute: str = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _parse_wire_form(cls, data: Any) -> Any:
        if isinstance(data, dict) and REF_KEY in data:
            return _split_target(data[REF_KEY])
        if isinstance(data, str):
            return _split_target(data)
        return data

    @model_serializer
    def _to_wire_form(self) -> dict[str, str]:
        return {REF_KEY: str(self)}

    def __str__(self) -> str:
        return f"{self.node_id}.{self.attribute}"


def _split_target(target: Any) -> dict[str, Any]:
    if not isinstance(target, str) or "." not in target:
        raise ValueError(f"Invalid reference {target!r}: expected 'node_id.attribute'")
    node_id, _, attribute = target.partition(".")
    return {"node_id": node_id, "attribute": attribute}


def ref(target: str, attribute: str | None = None) -> AttributeReference:
    """Build a reference from ``"node.attr"`` or ``("node", "attr")``."""
    if attribute is None:
        return AttributeReference.model_validate(target)
    return AttributeReference(node_id=target, attribute=attribute)


def is_reference_mapping(value: Any) -> bool:
    """True for the ``{"$ref": ...}`` wire form of a reference."""
    return isinstance(value, dict) and len(value) == 1 and REF_KEY in value


def parse_references(value: Any) -> Any:
    """Turn every ``{"$ref": ...}`` mapping inside *value* into a reference."""
    if isinstance(value, AttributeReference):
        return value
    if is_reference_mapping(value):
        return AttributeReference.model_validate(value)
    if isinstance(value, dict):
        return {k: parse_references(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [parse_references(v) for v in value]
    return value


def iter_references(value: Any) -> Iterator[AttributeReference]:
    """Yield every reference inside *value*, in declaration order."""
    if isinstance(value, AttributeReference):
        yield value
    elif isinstance(value, dict):
        for v in value.values():
            yield from iter_references(v)
    elif isinstance(value, list | tuple):
        for v in value:
            yield from iter_references(v)


def resolve_references(
    value: Any, outputs: Mapping[str, Mapping[str, Any] | None]
) -> tuple[Any, bool]:
    """Substitute references in *value* with producer outputs.

    *outputs* maps node id to its output attributes, or to ``None`` when the
    producer's outputs are not known yet.  Returns ``(resolved, complete)``
    where ``complete`` is False if any reference resolved to ``UNKNOWN``.
    """
    if isinstance(value, AttributeReference):
        produced = outputs.get(value.node_id)
        if produced is None or value.attribute not in produced:
            return UNKNOWN, False
        return produced[value.attribute], True
    if isinstance(value, dict):
        resolved: dict[str, Any] = {}
        complete = True
        for k, v in value.items():
            resolved[k], ok = resolve_references(v, outputs)
            complete = complete and ok
        return resolved, complete
    if isinstance(value, list | tuple):
        items: list[Any] = []
        complete = True
        for v in value:
            item, ok = resolve_references(v, outputs)
            items.append(item)
            complete = complete and ok
        return items, complete
    return value, True
