"""Per-iteration execution scope: the names generated code can see."""

from __future__ import annotations

import keyword
import logging
from collections.abc import MutableMapping
from typing import Any, Iterator, Optional

from ..core.context import Iteration
from ..core.traces import TraceLog
from .binding import bind_object
from .wrapper import SLOW_TOOL_WARNING_SECONDS, ToolWrapper

logger = logging.getLogger(__name__)

MAX_SCOPE_ENTRIES = 1_000


def is_valid_identifier(name: Any) -> bool:
    """Public Python identifiers only: no keywords, no leading underscore."""
    return (
        isinstance(name, str)
        and name.isidentifier()
        and not keyword.iskeyword(name)
        and not name.startswith("_")
    )


def strip_invalid_identifiers(values: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Drop entries whose keys cannot be used as variable names."""
    if not values:
        return {}
    kept = {k: v for k, v in values.items() if is_valid_identifier(k)}
    dropped = len(values) - len(kept)
    if dropped:
        logger.debug("Dropped %d variable(s) with invalid names", dropped)
    return kept


class ExecutionScope(MutableMapping):
    """Bounded mapping of names to values, rebuilt for every iteration.

    Only valid identifiers can be stored, and at most *max_entries* of them.
    """

    def __init__(self, max_entries: int = MAX_SCOPE_ENTRIES) -> None:
        self.max_entries = max_entries
        self._data: dict[str, Any] = {}

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if not is_valid_identifier(key):
            raise ValueError(f"Invalid scope name {key!r}")
        if key not in self._data and len(self._data) >= self.max_entries:
            raise ValueError(f"Scope is full ({self.max_entries} entries)")
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"ExecutionScope({sorted(self._data)})"


def build_scope(
    iteration: Iteration,
    traces: Optional[TraceLog] = None,
    *,
    slow_after: float = SLOW_TOOL_WARNING_SECONDS,
) -> ExecutionScope:
    """Assemble carried variables, bound objects and wrapped global tools.

    Later sources shadow earlier ones: objects over variables, tools over
    objects.
    """
    traces = traces if traces is not None else iteration.traces
    scope = ExecutionScope()

    for name, value in strip_invalid_identifiers(iteration.variables).items():
        scope[name] = value

    for obj in iteration.objects:
        if not is_valid_identifier(obj.name):
            logger.warning("Object %r is not a valid identifier; not exposed", obj.name)
            continue
        scope[obj.name] = bind_object(obj, iteration, traces, slow_after=slow_after)

    for tool in iteration.tools:
        wrapped = ToolWrapper(tool, traces, slow_after=slow_after)
        for label in (tool.name, *tool.aliases):
            if not is_valid_identifier(label):
                logger.warning("Tool name %r is not a valid identifier; not exposed", label)
                continue
            scope[label] = wrapped

    return scope
