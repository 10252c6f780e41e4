"""Object instances — named bundles of typed properties and tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import TypeAdapter

from .exit import validate_name
from .schema import adapter_for
from .tool import Tool


@dataclass(frozen=True)
class ObjectProperty:
    """One property of an object instance.

    ``schema`` validates writes; without one any value is accepted.
    """

    name: str
    value: Any = None
    writable: bool = False
    schema: Any = None
    description: str = ""
    _adapter: Optional[TypeAdapter] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        validate_name("property", self.name)
        object.__setattr__(self, "_adapter", adapter_for(self.schema))

    @property
    def adapter(self) -> Optional[TypeAdapter]:
        return self._adapter


@dataclass(frozen=True)
class ObjectInstance:
    """A named, access-controlled bundle exposed to generated code.

    Example::

        user = ObjectInstance(
            name="user",
            properties=[
                ObjectProperty(name="id", value="u_1"),
                ObjectProperty(name="age", value=30, writable=True, schema=int),
            ],
            tools=[greet_tool],
        )
    """

    name: str
    description: str = ""
    properties: tuple[ObjectProperty, ...] = ()
    tools: tuple[Tool, ...] = ()

    def __post_init__(self) -> None:
        validate_name("object", self.name)
        object.__setattr__(self, "properties", tuple(self.properties))
        object.__setattr__(self, "tools", tuple(self.tools))

        seen: set[str] = set()
        for label in [p.name for p in self.properties] + [t.name for t in self.tools]:
            if label in seen:
                raise ValueError(f"Duplicate member {label!r} on object {self.name!r}")
            seen.add(label)

    def get_property(self, name: str) -> Optional[ObjectProperty]:
        return next((p for p in self.properties if p.name == name), None)
