"""Tool declaration schemas.

Canonical tool declarations use the Gemini convention: upper-case type
names (``"OBJECT"``, ``"STRING"``) and a ``nullable`` flag. Chat-completion
backends expect lower-case JSON Schema. The conversion goes through an
explicit tree of :class:`ObjectSchema`, :class:`ArraySchema` and
:class:`ScalarSchema` nodes instead of rewriting dictionaries in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

SCALAR_TYPES = frozenset({"string", "number", "integer", "boolean", "null"})


@dataclass
class ScalarSchema:
    type: str = "string"
    description: str | None = None
    enum: list[Any] | None = None
    format: str | None = None
    nullable: bool = False


@dataclass
class ArraySchema:
    items: Schema | None = None
    description: str | None = None
    nullable: bool = False


@dataclass
class ObjectSchema:
    properties: dict[str, Schema] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)
    description: str | None = None
    nullable: bool = False


Schema = Union[ScalarSchema, ArraySchema, ObjectSchema]


@dataclass
class FunctionDeclaration:
    """A tool the model may call."""
    name: str
    description: str = ""
    parameters: dict[str, Any] | None = None


def _type_name(raw: dict[str, Any]) -> str:
    value = raw.get("type")
    if isinstance(value, list):
        # JSON Schema style ["string", "null"]
        value = next((v for v in value if str(v).lower() != "null"), "string")
    if isinstance(value, str) and value:
        name = value.lower()
        if name == "type_unspecified":
            name = ""
    else:
        name = ""
    if not name:
        if "properties" in raw:
            return "object"
        if "items" in raw:
            return "array"
        return "string"
    return name


def _is_nullable(raw: dict[str, Any]) -> bool:
    if raw.get("nullable"):
        return True
    value = raw.get("type")
    return isinstance(value, list) and any(str(v).lower() == "null" for v in value)


def parse_schema(raw: Any) -> Schema:
    """Build a schema tree from a Gemini- or JSON-Schema-style mapping."""
    if not isinstance(raw, dict):
        return ScalarSchema()

    kind = _type_name(raw)
    description = raw.get("description")
    nullable = _is_nullable(raw)

    if kind == "object":
        props = raw.get("properties") or {}
        required = raw.get("required") or []
        return ObjectSchema(
            properties={str(k): parse_schema(v) for k, v in props.items()},
            required=[str(r) for r in required],
            description=description,
            nullable=nullable,
        )
    if kind == "array":
        items = raw.get("items")
        return ArraySchema(
            items=parse_schema(items) if items is not None else None,
            description=description,
            nullable=nullable,
        )
    return ScalarSchema(
        type=kind if kind in SCALAR_TYPES else "string",
        description=description,
        enum=list(raw["enum"]) if raw.get("enum") else None,
        format=raw.get("format"),
        nullable=nullable,
    )


def to_json_schema(schema: Schema) -> dict[str, Any]:
    """Render a schema tree as lower-case JSON Schema."""
    if isinstance(schema, ObjectSchema):
        out: dict[str, Any] = {
            "type": "object",
            "properties": {k: to_json_schema(v) for k, v in schema.properties.items()},
        }
        if schema.required:
            out["required"] = list(schema.required)
    elif isinstance(schema, ArraySchema):
        out = {"type": "array"}
        if schema.items is not None:
            out["items"] = to_json_schema(schema.items)
    else:
        out = {"type": schema.type}
        if schema.enum:
            out["enum"] = list(schema.enum)
        if schema.format:
            out["format"] = schema.format

    if schema.description:
        out["description"] = schema.description
    if schema.nullable and out["type"] != "null":
        out["type"] = [out["type"], "null"]
    return out


def to_chat_tool(declaration: FunctionDeclaration) -> dict[str, Any]:
    """Convert a declaration to a chat-completion ``tools`` entry."""
    params = declaration.parameters or {"type": "OBJECT", "properties": {}}
    return {
        "type": "function",
        "function": {
            "name": declaration.name,
            "description": declaration.description,
            "parameters": to_json_schema(parse_schema(params)),
        },
    }
