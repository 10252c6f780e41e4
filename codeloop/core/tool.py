"""Tools — named capabilities exposed to generated code."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from pydantic import TypeAdapter, ValidationError
from typing_extensions import TypedDict

from .errors import ToolInputError
from .exit import validate_name
from .schema import adapter_for, format_validation_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tool:
    """A callable capability with input/output schemas.

    ``handler`` receives the validated input and may be a plain function or
    a coroutine function.  It may raise ordinary exceptions or one of the
    control-flow signals (``ThinkSignal``, ``ExecuteSignal``).

    Example::

        async def search(query: dict) -> list[str]:
            ...

        tool = Tool(
            name="search",
            description="Full-text search",
            input={"query": str},  # or a BaseModel / TypedDict
            output=list[str],
            handler=search,
        )
    """

    name: str
    handler: Callable[[Any], Any]
    description: str = ""
    aliases: tuple[str, ...] = ()
    input: Any = None
    output: Any = None
    _input_adapter: Optional[TypeAdapter] = field(default=None, init=False, repr=False, compare=False)
    _output_adapter: Optional[TypeAdapter] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        validate_name("tool", self.name)
        object.__setattr__(self, "aliases", tuple(self.aliases))
        for alias in self.aliases:
            validate_name("tool alias", alias)
        object.__setattr__(self, "_input_adapter", adapter_for(_dict_schema(self.input)))
        object.__setattr__(self, "_output_adapter", adapter_for(_dict_schema(self.output)))

    @property
    def input_adapter(self) -> Optional[TypeAdapter]:
        return self._input_adapter

    @property
    def output_adapter(self) -> Optional[TypeAdapter]:
        return self._output_adapter

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.handler)

    def parse_input(self, value: Any) -> Any:
        """Validate and coerce *value*; raise ``ToolInputError`` when invalid."""
        if self._input_adapter is None:
            return value
        try:
            return self._input_adapter.validate_python(value)
        except ValidationError as err:
            raise ToolInputError(
                f"Invalid input for tool {self.name}: {format_validation_error(err)}"
            ) from err

    def preview_input(self, value: Any) -> Any:
        """Best-effort coerced input for traces; falls back to the raw value."""
        try:
            return self.parse_input(value)
        except ToolInputError:
            return value

    def execute(self, value: Any) -> Any:
        """Run the handler.  Returns an awaitable when the handler is async."""
        logger.debug("Executing tool %s", self.name)
        return self.handler(self.parse_input(value))


def _dict_schema(schema: Any) -> Any:
    """Allow ``{"field": type}`` shorthand for object-shaped schemas."""
    if isinstance(schema, dict):
        return TypedDict("Input", schema)  # type: ignore[misc, operator]
    return schema
