"""Thin helpers around pydantic ``TypeAdapter`` for value schemas.

A schema is anything ``TypeAdapter`` accepts: builtin types, typing
constructs, ``Annotated`` constraints or ``BaseModel`` subclasses.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError


def adapter_for(schema: Any) -> Optional[TypeAdapter]:
    """Return a ``TypeAdapter`` for *schema*, or ``None`` when there is none."""
    if schema is None:
        return None
    if isinstance(schema, TypeAdapter):
        return schema
    return TypeAdapter(schema)


def format_validation_error(err: ValidationError) -> str:
    """Flatten a ValidationError into one readable line per problem."""
    parts = []
    for item in err.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "value"
        parts.append(f"{loc}: {item.get('msg', 'invalid')}")
    return "; ".join(parts) or str(err)


def json_schema_of(adapter: Optional[TypeAdapter]) -> dict[str, Any]:
    """JSON schema for *adapter*; an empty dict means "any value"."""
    if adapter is None:
        return {}
    try:
        return adapter.json_schema()
    except Exception:  # noqa: BLE001 - some python types have no JSON schema
        return {}


def to_plain(value: Any) -> Any:
    """Dump pydantic models to plain Python data; leave everything else."""
    if hasattr(value, "model_dump") and callable(value.model_dump):
        return value.model_dump()
    return value
