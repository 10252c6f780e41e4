"""Object instance binder.

``bind_object`` turns an :class:`ObjectInstance` into an ``ObjectProxy``:
a sealed object whose attributes are the declared properties (guarded by
``PropertyBinding``) and the object's tools (wrapped with ``ToolWrapper``).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError

from ..core.context import Iteration, Mutation
from ..core.errors import AssignmentError
from ..core.objects import ObjectInstance, ObjectProperty
from ..core.schema import format_validation_error
from ..core.traces import PropertyTrace, TraceLog
from .wrapper import SLOW_TOOL_WARNING_SECONDS, ToolWrapper

logger = logging.getLogger(__name__)


def _same_value(a: Any, b: Any) -> bool:
    try:
        return bool(a == b)
    except (TypeError, ValueError):
        # Types with ambiguous truth values (arrays, frames) are never equal here
        return False


class PropertyBinding:
    """Guarded accessor for one property of one object.

    The value only changes through :meth:`try_set`, and only to a value the
    property's schema accepted.
    """

    def __init__(
        self,
        object_name: str,
        prop: ObjectProperty,
        traces: TraceLog,
        iteration: Optional[Iteration] = None,
    ) -> None:
        self.object_name = object_name
        self.prop = prop
        self.traces = traces
        self.iteration = iteration
        self._initial = prop.value
        self._value = prop.value

    @property
    def name(self) -> str:
        return self.prop.name

    def get(self) -> Any:
        return self._value

    def try_set(self, value: Any) -> Optional[AssignmentError]:
        """Attempt a write.  Returns the rejection, or ``None`` on success."""
        if _same_value(value, self._value):
            return None

        label = f"{self.object_name}.{self.prop.name}"
        if not self.prop.writable:
            return AssignmentError(f"Property {label} is read-only and cannot be modified")

        coerced = value
        if self.prop.adapter is not None:
            try:
                coerced = self.prop.adapter.validate_python(value)
            except ValidationError as err:
                return AssignmentError(
                    f"Invalid value for Object property {label}: {format_validation_error(err)}"
                )

        self._value = coerced
        self.traces.push(
            PropertyTrace(object=self.object_name, property=self.prop.name, value=coerced)
        )
        if self.iteration is not None:
            self.iteration.track_mutation(
                Mutation(
                    object=self.object_name,
                    property=self.prop.name,
                    before=self._initial,
                    after=coerced,
                )
            )
        logger.debug("Property %s updated", label)
        return None


class ObjectProxy:
    """Sealed view of an object instance for generated code.

    Reading an undeclared attribute raises ``AttributeError``; adding or
    deleting attributes raises ``AssignmentError``.
    """

    __slots__ = ("_name", "_bindings", "_tools")

    def __init__(
        self,
        name: str,
        bindings: dict[str, PropertyBinding],
        tools: dict[str, ToolWrapper],
    ) -> None:
        object.__setattr__(self, "_name", name)
        object.__setattr__(self, "_bindings", bindings)
        object.__setattr__(self, "_tools", tools)

    def __getattr__(self, attr: str) -> Any:
        bindings = object.__getattribute__(self, "_bindings")
        if attr in bindings:
            return bindings[attr].get()
        tools = object.__getattribute__(self, "_tools")
        if attr in tools:
            return tools[attr]
        name = object.__getattribute__(self, "_name")
        raise AttributeError(f"Object {name} has no property or tool {attr!r}")

    def __setattr__(self, attr: str, value: Any) -> None:
        name = object.__getattribute__(self, "_name")
        bindings = object.__getattribute__(self, "_bindings")
        if attr in bindings:
            error = bindings[attr].try_set(value)
            if error is not None:
                raise error
            return
        if attr in object.__getattribute__(self, "_tools"):
            raise AssignmentError(f"Property {name}.{attr} is read-only and cannot be modified")
        raise AssignmentError(f"Cannot add property {attr!r} to object {name}")

    def __delattr__(self, attr: str) -> None:
        name = object.__getattribute__(self, "_name")
        raise AssignmentError(f"Cannot delete property {attr!r} of object {name}")

    def __dir__(self) -> list[str]:
        return [*object.__getattribute__(self, "_bindings"), *object.__getattribute__(self, "_tools")]

    def __repr__(self) -> str:
        name = object.__getattribute__(self, "_name")
        bindings = object.__getattribute__(self, "_bindings")
        values = ", ".join(f"{k}={b.get()!r}" for k, b in bindings.items())
        return f"<{name} {values}>"


def bind_object(
    obj: ObjectInstance,
    iteration: Optional[Iteration],
    traces: Optional[TraceLog] = None,
    *,
    slow_after: float = SLOW_TOOL_WARNING_SECONDS,
) -> ObjectProxy:
    """Build the sealed proxy for *obj*; writes are recorded on *iteration*."""
    if traces is None:
        if iteration is None:
            raise ValueError("bind_object needs an iteration or a trace log")
        traces = iteration.traces
    bindings = {p.name: PropertyBinding(obj.name, p, traces, iteration) for p in obj.properties}
    tools = {
        t.name: ToolWrapper(t, traces, object_name=obj.name, slow_after=slow_after)
        for t in obj.tools
    }
    return ObjectProxy(obj.name, bindings, tools)
