"""Value-or-getter configuration fields.

Instructions, objects, tools, exits and the transcript may be given as a
plain value or as a function of the live context.  Both are normalised to
``Static`` / ``Computed`` and resolved once per iteration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Static(Generic[T]):
    value: T

    def resolve(self, context: Any) -> T:
        return self.value


@dataclass(frozen=True)
class Computed(Generic[T]):
    fn: Callable[[Any], T]

    def resolve(self, context: Any) -> T:
        return self.fn(context)


ValueOrGetter = Union[Static[T], Computed[T]]


def as_getter(value: Any, default: Any = None) -> ValueOrGetter:
    """Wrap *value* as a ``Static`` or ``Computed``.

    Callables (other than classes) become ``Computed``; ``None`` becomes
    ``Static(default)``.  Already-wrapped values pass through.
    """
    if isinstance(value, (Static, Computed)):
        return value
    if value is None:
        return Static(default)
    if callable(value) and not isinstance(value, type):
        return Computed(value)
    return Static(value)
