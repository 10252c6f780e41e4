"""Render schemas, tools and objects as Python-like type declarations.

Schemas are anything pydantic's ``TypeAdapter`` accepts; they are rendered
from their JSON schema, so the text is the same whether the caller used a
``BaseModel``, a ``TypedDict`` or plain typing constructs.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from ..core.exit import Exit
from ..core.objects import ObjectInstance
from ..core.schema import json_schema_of
from ..core.tool import Tool

_SCALARS = {
    "string": "str",
    "integer": "int",
    "number": "float",
    "boolean": "bool",
    "null": "None",
}


def schema_to_type(schema: Optional[dict[str, Any]], defs: Optional[dict[str, Any]] = None) -> str:
    """Convert a JSON schema into type text such as ``list[dict[str, int]]``."""
    if not schema:
        return "Any"
    defs = {**(defs or {}), **schema.get("$defs", {})}

    if "$ref" in schema:
        target = defs.get(schema["$ref"].rsplit("/", 1)[-1])
        return schema_to_type(target, defs) if target is not None else "Any"

    if "const" in schema:
        return f"Literal[{_literal(schema['const'])}]"
    if "enum" in schema:
        return f"Literal[{', '.join(_literal(v) for v in schema['enum'])}]"

    for key in ("anyOf", "oneOf"):
        if key in schema:
            return _union([schema_to_type(s, defs) for s in schema[key]])
    if "allOf" in schema and len(schema["allOf"]) == 1:
        return schema_to_type(schema["allOf"][0], defs)

    kind = schema.get("type")
    if isinstance(kind, list):
        return _union([schema_to_type({**schema, "type": k}, defs) for k in kind])
    if kind in _SCALARS:
        return _SCALARS[kind]
    if kind == "array":
        if "prefixItems" in schema:
            items = ", ".join(schema_to_type(s, defs) for s in schema["prefixItems"])
            return f"tuple[{items}]"
        return f"list[{schema_to_type(schema.get('items'), defs)}]"
    if kind == "object" or "properties" in schema:
        return _object_type(schema, defs)
    return "Any"


def _object_type(schema: dict[str, Any], defs: dict[str, Any]) -> str:
    properties = schema.get("properties") or {}
    if not properties:
        extra = schema.get("additionalProperties")
        value = schema_to_type(extra, defs) if isinstance(extra, dict) else "Any"
        return f"dict[str, {value}]"
    required = set(schema.get("required", ()))
    fields = []
    for name, sub in properties.items():
        text = schema_to_type(sub, defs)
        if name not in required:
            text = f"NotRequired[{text}]"
        fields.append(f"{json.dumps(name)}: {text}")
    return "{" + ", ".join(fields) + "}"


def _union(members: list[str]) -> str:
    seen: list[str] = []
    for member in members:
        if member not in seen:
            seen.append(member)
    return " | ".join(seen)


def _literal(value: Any) -> str:
    return json.dumps(value) if isinstance(value, str) else repr(value)


def _comment_block(text: str, indent: str = "") -> str:
    return "\n".join(f"{indent}# {line}".rstrip() for line in text.strip().splitlines())


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------


def tool_signature(tool: Tool) -> str:
    """``search(*, query: str) -> list[str]`` style signature."""
    schema = json_schema_of(tool.input_adapter)
    output = schema_to_type(json_schema_of(tool.output_adapter)) if tool.output_adapter else "Any"

    resolved = schema
    if "$ref" in schema:
        resolved = schema.get("$defs", {}).get(schema["$ref"].rsplit("/", 1)[-1], schema)
    properties = resolved.get("properties") if isinstance(resolved, dict) else None

    if tool.input_adapter is None:
        params = "input: Any = None"
    elif properties:
        required = set(resolved.get("required", ()))
        parts = []
        for name, sub in properties.items():
            text = schema_to_type(sub, schema.get("$defs"))
            parts.append(f"{name}: {text}" if name in required else f"{name}: {text} = ...")
        params = "*, " + ", ".join(parts)
    else:
        params = f"input: {schema_to_type(schema)}"
    return f"{tool.name}({params}) -> {output}"


def tool_typings(tool: Tool, indent: str = "") -> str:
    prefix = "async def" if tool.is_async else "def"
    lines = []
    if tool.description:
        lines.append(_comment_block(tool.description, indent))
    if tool.aliases:
        lines.append(f"{indent}# Aliases: {', '.join(tool.aliases)}")
    lines.append(f"{indent}{prefix} {tool_signature(tool)}: ...")
    return "\n".join(lines)


def object_typings(obj: ObjectInstance) -> str:
    """Declaration of an object instance as a Python class body."""
    lines = []
    if obj.description:
        lines.append(_comment_block(obj.description))
    lines.append(f"class {obj.name}:")
    body = []
    for prop in obj.properties:
        if prop.description:
            body.append(_comment_block(prop.description, "    "))
        if prop.adapter is not None:
            text = schema_to_type(json_schema_of(prop.adapter))
        elif prop.value is not None:
            text = type(prop.value).__name__
        else:
            text = "Any"
        access = "writable" if prop.writable else "read-only"
        body.append(f"    {prop.name}: {text} = {_preview(prop.value)}  # {access}")
    for tool in obj.tools:
        body.append(tool_typings(tool, "    "))
    lines.extend(body or ["    pass"])
    return "\n".join(lines)


def exit_typings(ex: Exit) -> Optional[str]:
    if not ex.has_schema:
        return None
    return schema_to_type(json_schema_of(ex.adapter))


def _preview(value: Any, limit: int = 80) -> str:
    text = repr(value)
    return text if len(text) <= limit else text[: limit - 3] + "..."
