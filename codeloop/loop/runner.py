"""ExecutionLoop — the agentic code-execution loop (SubRunner pattern).

Extends :class:`~pipeline.sub_runner.SubRunner`: every iteration runs a
``Pipeline([PromptStep, GenerateStep, ParseCodeStep, ScopeStep,
SandboxStep, InterpretStep])`` and the loop continues while the iteration
ends in a retryable status.

Public entry points are :func:`execute` and :func:`execute_sync`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import traceback
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from pipeline import Pipeline
from pipeline.context import StepContext
from pipeline.sub_runner import SubRunner

from ..config import LoopOptions
from ..core.abort import AbortSignal
from ..core.context import Context, Iteration
from ..core.status import RETRYABLE_STATUSES, AbortedStatus, ExecutionErrorStatus
from ..core.traces import AbortSignalTrace
from ..prompts.dual_mode import follow_up_message
from ..protocols.llm import GeneratorLike
from .context import LoopIterationContext
from .steps import (
    ABORTED_BY_USER,
    ExitHook,
    GenerateStep,
    InterpretStep,
    ParseCodeStep,
    PromptStep,
    SandboxStep,
    ScopeStep,
)

logger = logging.getLogger(__name__)

CALLBACKS_NOT_IMPLEMENTED = "Callbacks are not yet implemented"


@dataclass(frozen=True)
class TraceEvent:
    """Delivered to ``on_trace`` for every trace pushed during a run."""

    trace: Any
    iteration: int


IterationHook = Callable[[Iteration], Optional[Awaitable[None]]]
TraceHook = Callable[[TraceEvent], Optional[Awaitable[None]]]


@dataclass
class ExecutionResult:
    """Outcome of one :func:`execute` call."""

    status: str  # "success" | "error"
    context: Context
    iterations: list[Iteration] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def last_iteration(self) -> Optional[Iteration]:
        return self.iterations[-1] if self.iterations else None

    @property
    def exit_name(self) -> Optional[str]:
        last = self.last_iteration
        if self.is_success and last is not None:
            return last.status.exit_name
        return None

    @property
    def return_value(self) -> Any:
        last = self.last_iteration
        if self.is_success and last is not None:
            return last.status.return_value
        return None


class ExecutionLoop(SubRunner):
    """Drive one execution run.  Create one instance per run.

    The loop budget is ``context.loop``; reaching it without a terminal
    status yields an error result.
    """

    def __init__(
        self,
        context: Context,
        generator: GeneratorLike,
        *,
        signal: Optional[AbortSignal] = None,
        on_iteration_end: Optional[IterationHook] = None,
        on_trace: Optional[TraceHook] = None,
        on_exit: Optional[ExitHook] = None,
    ) -> None:
        super().__init__(max_iterations=context.loop)
        self.context = context
        self.generator = generator
        self.signal = signal
        self.on_iteration_end = on_iteration_end
        self.on_trace = on_trace
        self.on_exit = on_exit
        self._unsubscribes: list[Callable[[], None]] = []
        self._pending_hooks: set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # SubRunner template methods
    # ------------------------------------------------------------------

    def _build_inner_pipeline(self, **kwargs: Any) -> Pipeline:
        options = self.context.options
        return Pipeline(
            [
                PromptStep(options),
                GenerateStep(self.generator, options, self.signal),
                ParseCodeStep(),
                ScopeStep(options),
                SandboxStep(options, self.signal),
                InterpretStep(self.signal, self.on_exit),
            ]
        )

    async def _build_initial_context(self, **kwargs: Any) -> StepContext:
        return self._start_iteration(history=())

    def _is_done(self, ctx: StepContext) -> bool:
        iteration = ctx.current  # type: ignore[attr-defined]
        return iteration.status.type not in RETRYABLE_STATUSES

    def _extract_result(self, ctx: StepContext) -> ExecutionResult:
        iteration: Iteration = ctx.current  # type: ignore[attr-defined]
        status = iteration.status

        if status.type == "exit_success":
            return self._result("success")
        if status.type == "callback_requested":
            return self._result("error", CALLBACKS_NOT_IMPLEMENTED)
        return self._result(
            "error", iteration.error or f"Unknown error. Status: {status.type}"
        )

    async def _accumulate(self, ctx: StepContext) -> StepContext:
        loop_ctx: LoopIterationContext = ctx  # type: ignore[assignment]
        iteration = loop_ctx.current

        history = list(loop_ctx.history)
        if iteration.llm is not None and iteration.llm.output:
            history.append({"role": "assistant", "content": iteration.llm.output})
        follow_up = follow_up_message(iteration.status, iteration.code)
        if follow_up is not None:
            history.append(follow_up)

        return self._start_iteration(history=tuple(history))

    # ------------------------------------------------------------------
    # SubRunner hooks
    # ------------------------------------------------------------------

    def _on_step_error(self, ctx: StepContext, error: Exception) -> StepContext:
        """Anything escaping a pass fails that iteration, not the run.

        Once the abort signal is set the iteration ends as ``aborted``
        instead, whatever the generator raised.
        """
        iteration: Iteration = ctx.current  # type: ignore[attr-defined]
        if self.signal is not None and self.signal.aborted and not iteration.is_ended:
            logger.info("Iteration %d aborted: %s", iteration.number, self.signal.reason_text())
            iteration.traces.push(AbortSignalTrace(reason=ABORTED_BY_USER))
            iteration.end(AbortedStatus(reason=self.signal.reason_text()))
            return ctx.replace(status=iteration.status)

        logger.warning("Iteration %d failed unexpectedly: %s", iteration.number, error)
        if not iteration.is_ended:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            iteration.end(
                ExecutionErrorStatus(
                    message=f"An unexpected error occurred: {error}",
                    stack=stack or "No stack trace available",
                )
            )
        return ctx.replace(status=iteration.status)

    async def _after_iteration(self, ctx: StepContext) -> None:
        iteration: Iteration = ctx.current  # type: ignore[attr-defined]
        self._unsubscribe_all()
        if self.on_iteration_end is None:
            return
        try:
            result = self.on_iteration_end(iteration)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("on_iteration_end hook failed for iteration %d", iteration.number)

    def _on_timeout(self, last_ctx: StepContext, iteration: int) -> ExecutionResult:
        logger.warning("Loop limit (%d) reached", self.max_iterations)
        return self._result(
            "error", f"Loop limit exceeded. Maximum allowed loops: {self.context.loop}"
        )

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    async def run(self) -> ExecutionResult:
        """Run the loop; never raises for failures inside the run."""
        try:
            result = await self.run_loop()
        except Exception as error:
            logger.exception("Execution failed")
            result = self._result("error", str(error) or type(error).__name__)
        finally:
            self._unsubscribe_all()
            if self._pending_hooks:
                await asyncio.gather(*self._pending_hooks, return_exceptions=True)

        logger.info(
            "Execution finished: %s after %d iteration(s)",
            result.status,
            len(result.iterations),
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _start_iteration(self, history: tuple[dict[str, str], ...]) -> LoopIterationContext:
        iteration = self.context.next_iteration()
        logger.debug("Starting iteration %d/%d", iteration.number, self.context.loop)
        if self.on_trace is not None:
            self._unsubscribes.append(iteration.traces.on_push(self._forward_traces(iteration)))
        return LoopIterationContext(
            iteration=iteration.number,
            current=iteration,
            history=history,
        )

    def _forward_traces(self, iteration: Iteration) -> Callable[[list[Any]], None]:
        def forward(traces: list[Any]) -> None:
            for trace in traces:
                result = self.on_trace(TraceEvent(trace=trace, iteration=iteration.number))
                if inspect.isawaitable(result):
                    future = asyncio.ensure_future(result)
                    self._pending_hooks.add(future)
                    future.add_done_callback(self._hook_done)

        return forward

    def _hook_done(self, future: asyncio.Future) -> None:
        self._pending_hooks.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("on_trace hook failed", exc_info=future.exception())

    def _unsubscribe_all(self) -> None:
        while self._unsubscribes:
            self._unsubscribes.pop()()

    def _result(self, status: str, error: Optional[str] = None) -> ExecutionResult:
        return ExecutionResult(
            status=status,
            context=self.context,
            iterations=self.context.iterations,
            error=error,
        )


async def execute(
    *,
    generator: GeneratorLike,
    instructions: Any = None,
    objects: Any = None,
    tools: Any = None,
    exits: Any = None,
    transcript: Any = None,
    options: Optional[LoopOptions] = None,
    signal: Optional[AbortSignal] = None,
    on_iteration_end: Optional[IterationHook] = None,
    on_trace: Optional[TraceHook] = None,
    on_exit: Optional[ExitHook] = None,
) -> ExecutionResult:
    """Run the loop until an exit succeeds, a fatal status, or the loop limit.

    ``instructions``, ``objects``, ``tools``, ``exits`` and ``transcript``
    accept a value or a ``fn(context)`` getter evaluated every iteration.

    Example::

        result = await execute(
            generator=LiteLLMGenerator(model="gpt-4o-mini"),
            instructions="Add 2 and 3",
            exits=[Exit(name="done", schema=int)],
        )
        assert result.return_value == 5
    """
    context = Context(
        instructions=instructions,
        objects=objects,
        tools=tools,
        exits=exits,
        transcript=transcript,
        options=options,
    )
    loop = ExecutionLoop(
        context,
        generator,
        signal=signal,
        on_iteration_end=on_iteration_end,
        on_trace=on_trace,
        on_exit=on_exit,
    )
    return await loop.run()


def execute_sync(**kwargs: Any) -> ExecutionResult:
    """Blocking wrapper around :func:`execute` for callers without a loop."""
    return asyncio.run(execute(**kwargs))
