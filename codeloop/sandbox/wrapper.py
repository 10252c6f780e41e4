"""ToolWrapper — the callable a tool becomes inside generated code.

``invoke()`` runs the tool and returns a tagged outcome; ``__call__`` turns
that outcome back into a return value or a raise so the snippet can use
the tool like any other function.  Every call produces exactly one
``tool_call`` trace.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, Union

from ..core.errors import ThinkSignal, ToolInputError, VMInterruptSignal, VMSignal
from ..core.outcome import Failure, Ok, Outcome, from_signal, to_signal
from ..core.schema import json_schema_of, to_plain
from ..core.tool import Tool
from ..core.traces import (
    ExecuteSignalTrace,
    ThinkSignalTrace,
    ToolCallTrace,
    ToolSlowTrace,
    TraceLog,
    now_ms,
)

logger = logging.getLogger(__name__)

SLOW_TOOL_WARNING_SECONDS = 15.0


class ToolWrapper:
    """Wrap *tool* for use from sandboxed code.

    Sync handlers return their value directly; async handlers return an
    awaitable.  Input may be given as a single positional value or as
    keyword arguments, which are collected into a dict.

    Async handlers get their ``tool_slow`` trace from a timer while they are
    still running.  Sync handlers run on the event loop thread, so theirs
    can only be recorded once they return, right after the ``tool_call``
    trace.
    """

    def __init__(
        self,
        tool: Tool,
        traces: TraceLog,
        *,
        object_name: Optional[str] = None,
        slow_after: float = SLOW_TOOL_WARNING_SECONDS,
    ) -> None:
        self.tool = tool
        self.traces = traces
        self.object_name = object_name
        self.slow_after = slow_after

    @property
    def qualified_name(self) -> str:
        if self.object_name:
            return f"{self.object_name}.{self.tool.name}"
        return self.tool.name

    def __repr__(self) -> str:
        return f"<tool {self.qualified_name}>"

    # ------------------------------------------------------------------
    # Tagged entry point
    # ------------------------------------------------------------------

    def invoke(self, *args: Any, **kwargs: Any) -> Union[Outcome, Awaitable[Outcome]]:
        """Run the tool; never raises.

        Returns an ``Outcome`` for sync handlers and an awaitable resolving
        to one for async handlers.
        """
        started = now_ms()
        try:
            value = _collect_input(self.tool.name, args, kwargs)
        except ToolInputError as err:
            return self._settle(started, None, error=err)

        if self.tool.is_async:
            return self._invoke_async(started, value)

        try:
            result = self.tool.execute(value)
        except Exception as err:  # noqa: BLE001 - becomes a tagged Failure
            outcome = self._settle(started, value, error=err)
        else:
            outcome = self._settle(started, value, result=result)

        elapsed = (now_ms() - started) / 1000
        if elapsed >= self.slow_after:
            self._push_slow(started, value)
        return outcome

    async def _invoke_async(self, started: float, value: Any) -> Outcome:
        loop = asyncio.get_running_loop()
        timer = loop.call_later(self.slow_after, self._push_slow, started, value)
        try:
            result = await self.tool.execute(value)
        except Exception as err:  # noqa: BLE001 - becomes a tagged Failure
            return self._settle(started, value, error=err)
        finally:
            timer.cancel()
        return self._settle(started, value, result=result)

    # ------------------------------------------------------------------
    # Snippet-facing entry point
    # ------------------------------------------------------------------

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        outcome = self.invoke(*args, **kwargs)
        if asyncio.iscoroutine(outcome):
            return _unwrap_async(outcome)
        return _unwrap(outcome)  # type: ignore[arg-type]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _settle(
        self,
        started: float,
        value: Any,
        *,
        result: Any = None,
        error: Optional[BaseException] = None,
    ) -> Outcome:
        """Record the call and map its result or exception to an outcome."""
        if error is None and isinstance(result, VMSignal):
            # A returned signal behaves like a raised one
            error = result
            result = None

        if isinstance(error, VMSignal):
            return self._settle_signal(started, value, error)

        if error is not None:
            logger.debug("Tool %s failed: %s", self.qualified_name, error)
            self._push_call(started, value, error=str(error), success=False)
            return Failure(error)

        self._push_call(started, value, output=to_plain(result))
        return Ok(result)

    def _settle_signal(self, started: float, value: Any, signal: VMSignal) -> Outcome:
        if isinstance(signal, ThinkSignal):
            self.traces.push(ThinkSignalTrace(started_at=started))
        elif isinstance(signal, VMInterruptSignal):
            signal.tool_call = {
                "name": self.qualified_name,
                "input_schema": json_schema_of(self.tool.input_adapter),
                "output_schema": json_schema_of(self.tool.output_adapter),
                "input": self.tool.preview_input(value),
            }
            self.traces.push(ExecuteSignalTrace(started_at=started))
        self._push_call(started, value, success=True)
        return from_signal(signal)

    def _push_call(
        self,
        started: float,
        value: Any,
        *,
        output: Any = None,
        error: Any = None,
        success: bool = True,
    ) -> None:
        self.traces.push(
            ToolCallTrace(
                started_at=started,
                ended_at=now_ms(),
                tool_name=self.tool.name,
                object=self.object_name,
                input=to_plain(self.tool.preview_input(value)),
                output=output,
                error=error,
                success=success,
            )
        )

    def _push_slow(self, started: float, value: Any) -> None:
        duration = now_ms() - started
        logger.warning("Tool %s is slow (%.0f ms)", self.qualified_name, duration)
        self.traces.push(
            ToolSlowTrace(
                started_at=started,
                tool_name=self.tool.name,
                object=self.object_name,
                input=to_plain(value),
                duration=duration,
            )
        )


def wrap_tool(
    tool: Tool,
    traces: TraceLog,
    object_name: Optional[str] = None,
    *,
    slow_after: float = SLOW_TOOL_WARNING_SECONDS,
) -> ToolWrapper:
    return ToolWrapper(tool, traces, object_name=object_name, slow_after=slow_after)


def _collect_input(name: str, args: tuple, kwargs: dict) -> Any:
    if args and kwargs:
        raise ToolInputError(
            f"Tool {name} accepts either one input value or keyword arguments, not both"
        )
    if len(args) > 1:
        raise ToolInputError(f"Tool {name} accepts a single input value, got {len(args)}")
    if kwargs:
        return dict(kwargs)
    return args[0] if args else None


def _unwrap(outcome: Outcome) -> Any:
    if isinstance(outcome, Ok):
        return outcome.value
    if isinstance(outcome, Failure):
        raise outcome.error
    signal = to_signal(outcome)
    assert signal is not None
    raise signal


async def _unwrap_async(pending: Awaitable[Outcome]) -> Any:
    return _unwrap(await pending)
