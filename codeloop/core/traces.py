"""Traces — append-only records of what happened during an iteration."""

from __future__ import annotations

import logging
import time
from typing import Annotated, Any, Callable, Iterator, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


def now_ms() -> float:
    return time.time() * 1000


class _TraceBase(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    started_at: float = Field(default_factory=now_ms, description="Epoch milliseconds")


class LLMCallTrace(_TraceBase):
    type: Literal["llm_call"] = "llm_call"
    ended_at: float
    status: Literal["success", "error"] = "success"
    model: str = ""


class ToolCallTrace(_TraceBase):
    type: Literal["tool_call"] = "tool_call"
    ended_at: float
    tool_name: str
    object: Optional[str] = None
    input: Any = None
    output: Any = None
    error: Any = None
    success: bool = True


class ToolSlowTrace(_TraceBase):
    type: Literal["tool_slow"] = "tool_slow"
    tool_name: str
    object: Optional[str] = None
    input: Any = None
    duration: float = Field(..., description="Milliseconds elapsed when the warning fired")


class PropertyTrace(_TraceBase):
    type: Literal["property"] = "property"
    object: str
    property: str
    value: Any = None


class ThinkSignalTrace(_TraceBase):
    type: Literal["think_signal"] = "think_signal"
    ended_at: float = Field(default_factory=now_ms)
    line: int = 0


class ExecuteSignalTrace(_TraceBase):
    type: Literal["execute_signal"] = "execute_signal"
    ended_at: float = Field(default_factory=now_ms)
    line: int = 0


class AbortSignalTrace(_TraceBase):
    type: Literal["abort_signal"] = "abort_signal"
    reason: str


class CodeExecutionTrace(_TraceBase):
    type: Literal["code_execution"] = "code_execution"
    ended_at: float
    lines_executed: int = 0


class LogTrace(_TraceBase):
    type: Literal["log"] = "log"
    message: str


Trace = Annotated[
    Union[
        LLMCallTrace,
        ToolCallTrace,
        ToolSlowTrace,
        PropertyTrace,
        ThinkSignalTrace,
        ExecuteSignalTrace,
        AbortSignalTrace,
        CodeExecutionTrace,
        LogTrace,
    ],
    Field(discriminator="type"),
]


class TraceLog:
    """Append-only trace list with push subscriptions.

    Subscribers receive each batch of pushed traces.  A failing subscriber
    is logged and skipped; it never breaks the push.
    """

    def __init__(self) -> None:
        self._items: list[Any] = []
        self._subscribers: list[Callable[[list[Any]], None]] = []
        self._closed = False

    def push(self, *traces: Any) -> None:
        if self._closed:
            logger.warning(
                "Dropping %d trace(s) pushed after the iteration ended", len(traces)
            )
            return
        batch = list(traces)
        self._items.extend(batch)
        for subscriber in list(self._subscribers):
            try:
                subscriber(batch)
            except Exception:
                logger.exception("Trace subscriber failed")

    def on_push(self, subscriber: Callable[[list[Any]], None]) -> Callable[[], None]:
        """Subscribe to pushes; returns the unsubscribe function."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def close(self) -> None:
        self._closed = True

    def of_type(self, trace_type: str) -> list[Any]:
        return [t for t in self._items if t.type == trace_type]

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> Any:
        return self._items[index]
