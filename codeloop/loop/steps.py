"""Inner pipeline steps for a single execution-loop pass.

Each step handles one concern within a pass.  Collaborators (generator,
options, abort signal, hooks) are injected via the constructor; the
:class:`Iteration` carried by the context is the record each step fills in.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from ..config import LoopOptions
from ..core.abort import AbortSignal
from ..core.context import LLMCallInfo
from ..core.errors import AbortedSignal, CodeExecutionError, GenerationError, InvalidCodeError
from ..core.exit import THINK_ACTION, Exit, action_names, resolve_exit
from ..core.outcome import Aborted, Failure, Interrupt, Ok, Think
from ..core.schema import format_validation_error
from ..core.status import (
    AbortedStatus,
    CallbackRequested,
    ExecutionErrorStatus,
    ExitError,
    ExitSuccess,
    InvalidCodeErrorStatus,
    ThinkingRequested,
)
from ..core.traces import AbortSignalTrace, CodeExecutionTrace, LLMCallTrace, now_ms
from ..core.truncator import get_model_output_limit, truncate_wrapped_content
from ..prompts.dual_mode import initial_user_message, stop_tokens, system_message
from ..protocols.llm import GenerationRequest, GeneratorLike
from ..sandbox.code_extraction import parse_assistant_response
from ..sandbox.scope import build_scope
from ..sandbox.vm import run_async_function
from .context import LoopIterationContext

logger = logging.getLogger(__name__)

ExitHook = Callable[[Exit, Any], Optional[Awaitable[None]]]

ABORTED_BY_USER = "The operation was aborted by user."


# ---------------------------------------------------------------------------
# PromptStep
# ---------------------------------------------------------------------------


class PromptStep:
    """Render the messages for this pass and fit them into the token budget.

    The system and initial user messages are rebuilt from the iteration's
    resolved catalogue every pass; the follow-up history is carried.
    """

    requires = frozenset({"current", "history"})
    provides = frozenset({"messages"})

    def __init__(self, options: LoopOptions) -> None:
        self.options = options

    @property
    def token_limit(self) -> int:
        window = self.options.context_window
        return window - get_model_output_limit(window)

    def __call__(self, ctx: LoopIterationContext) -> LoopIterationContext:
        iteration = ctx.current
        catalogue = iteration.catalogue
        messages = [
            system_message(catalogue),
            initial_user_message(catalogue),
            *ctx.history,
        ]
        fitted = truncate_wrapped_content(messages, self.token_limit, throw_on_failure=False)
        iteration.messages = fitted
        return ctx.replace(messages=tuple(fitted))


# ---------------------------------------------------------------------------
# GenerateStep
# ---------------------------------------------------------------------------


class GenerateStep:
    """Call the content-generation capability and record its accounting."""

    requires = frozenset({"messages"})
    provides = frozenset({"llm_output"})

    def __init__(
        self,
        generator: GeneratorLike,
        options: LoopOptions,
        signal: Optional[AbortSignal] = None,
    ) -> None:
        self.generator = generator
        self.options = options
        self.signal = signal

    async def __call__(self, ctx: LoopIterationContext) -> LoopIterationContext:
        if self.signal is not None and self.signal.aborted:
            # The runner turns this into an aborted iteration
            raise AbortedSignal(self.signal.reason_text())

        iteration = ctx.current
        started_at = now_ms()

        system_prompt = next((m["content"] for m in ctx.messages if m["role"] == "system"), None)
        request = GenerationRequest(
            system_prompt=system_prompt,
            messages=[
                {"role": m["role"], "content": m["content"]}
                for m in ctx.messages
                if m["role"] in ("user", "assistant")
            ],
            model=self.options.model,
            temperature=self.options.temperature,
            response_format="text",
            stop_sequences=stop_tokens(),
            max_tokens=get_model_output_limit(self.options.context_window),
            signal=self.signal,
        )
        response = await self.generator.generate(request)

        if not response.text:
            logger.warning("Generator returned no output on iteration %d", iteration.number)
            raise GenerationError("No output from LLM")

        ended_at = now_ms()
        iteration.llm = LLMCallInfo(
            started_at=started_at,
            ended_at=ended_at,
            status="success",
            tokens=response.tokens,
            spend=response.cost,
            cached=response.cached,
            output=response.text,
            model=response.model,
        )
        iteration.traces.push(
            LLMCallTrace(
                started_at=started_at,
                ended_at=ended_at,
                status="success",
                model=self.options.model or "",
            )
        )
        return ctx.replace(llm_output=response.text)


# ---------------------------------------------------------------------------
# ParseCodeStep
# ---------------------------------------------------------------------------


class ParseCodeStep:
    """Extract the code block from the model output.  Pure."""

    requires = frozenset({"llm_output"})
    provides = frozenset({"code", "assistant_message"})

    def __call__(self, ctx: LoopIterationContext) -> LoopIterationContext:
        iteration = ctx.current
        parsed = parse_assistant_response(ctx.llm_output or "")
        iteration.code = parsed.code.strip()
        if iteration.llm is not None:
            iteration.llm = iteration.llm.model_copy(update={"output": parsed.raw})
        return ctx.replace(code=iteration.code, assistant_message=parsed.raw)


# ---------------------------------------------------------------------------
# ScopeStep
# ---------------------------------------------------------------------------


class ScopeStep:
    """Bind objects, wrap tools and carry variables into a fresh scope."""

    requires = frozenset({"current"})
    provides = frozenset({"scope"})

    def __init__(self, options: LoopOptions) -> None:
        self.options = options

    def __call__(self, ctx: LoopIterationContext) -> LoopIterationContext:
        scope = build_scope(ctx.current, slow_after=self.options.slow_tool_warning)
        logger.debug("Scope for iteration %d: %s", ctx.current.number, scope)
        return ctx.replace(scope=scope)


# ---------------------------------------------------------------------------
# SandboxStep
# ---------------------------------------------------------------------------


class SandboxStep:
    """Run the code, unless the run was aborted before it could start."""

    requires = frozenset({"code", "scope"})
    provides = frozenset({"sandbox_result", "sandbox_started_at", "status"})

    def __init__(self, options: LoopOptions, signal: Optional[AbortSignal] = None) -> None:
        self.options = options
        self.signal = signal

    async def __call__(self, ctx: LoopIterationContext) -> LoopIterationContext:
        iteration = ctx.current

        if self.signal is not None and self.signal.aborted:
            iteration.traces.push(AbortSignalTrace(reason=ABORTED_BY_USER))
            iteration.end(AbortedStatus(reason=self.signal.reason_text()))
            return ctx.replace(status=iteration.status)

        started_at = now_ms()
        logger.debug("Executing code:\n%s...", (ctx.code or "")[:200])
        result = await run_async_function(
            ctx.scope,
            ctx.code or "",
            iteration.traces,
            self.signal,
            timeout=self.options.timeout,
        )
        if not isinstance(result.error, InvalidCodeError):
            iteration.variables = result.variables
        return ctx.replace(sandbox_result=result, sandbox_started_at=started_at)


# ---------------------------------------------------------------------------
# InterpretStep
# ---------------------------------------------------------------------------


class InterpretStep:
    """Map the sandbox outcome to the iteration's terminal status.

    Checks, in order: invalid code, execution errors, abort, other
    failures, think, interrupt, and finally the returned action against
    the declared exits.
    """

    requires = frozenset({"sandbox_result"})
    provides = frozenset({"status"})

    def __init__(
        self,
        signal: Optional[AbortSignal] = None,
        on_exit: Optional[ExitHook] = None,
    ) -> None:
        self.signal = signal
        self.on_exit = on_exit

    async def __call__(self, ctx: LoopIterationContext) -> LoopIterationContext:
        iteration = ctx.current
        if iteration.is_ended:
            # Skipped run (aborted before execution)
            return ctx.replace(status=iteration.status)

        result = ctx.sandbox_result
        outcome = result.outcome

        if isinstance(outcome, Failure) and isinstance(outcome.error, InvalidCodeError):
            iteration.end(InvalidCodeErrorStatus(message=outcome.error.message))
            return ctx.replace(status=iteration.status)

        iteration.traces.push(
            CodeExecutionTrace(
                started_at=ctx.sandbox_started_at or now_ms(),
                ended_at=now_ms(),
                lines_executed=result.lines_executed,
            )
        )

        status = await self._interpret(iteration, outcome)
        iteration.end(status)
        return ctx.replace(status=status)

    async def _interpret(self, iteration: Any, outcome: Any) -> Any:
        if isinstance(outcome, Failure) and isinstance(outcome.error, CodeExecutionError):
            return ExecutionErrorStatus(message=outcome.error.message, stack=outcome.error.stack)

        if isinstance(outcome, Aborted) or (self.signal is not None and self.signal.aborted):
            reason = self.signal.reason_text() if self.signal is not None and self.signal.aborted else outcome.reason
            return AbortedStatus(reason=reason)

        if isinstance(outcome, Failure):
            return ExecutionErrorStatus(message=str(outcome.error) or "Unknown error occurred")

        if isinstance(outcome, Think):
            return ThinkingRequested(variables=outcome.variables, reason=outcome.reason)

        if isinstance(outcome, Interrupt):
            return CallbackRequested(
                reason=outcome.signal.message, stack=outcome.signal.truncated_code
            )

        assert isinstance(outcome, Ok)
        return await self._resolve_exit(iteration, outcome.value)

    async def _resolve_exit(self, iteration: Any, returned: Any) -> Any:
        valid_actions = ", ".join(action_names(iteration.exits))
        return_value = returned if isinstance(returned, Mapping) and returned else None
        action = return_value.get("action") if return_value is not None else None

        if action == THINK_ACTION:
            variables = {k: v for k, v in return_value.items() if k != "action"}
            return ThinkingRequested(
                variables=variables if variables else iteration.variables,
                reason="Thinking requested",
            )

        if not action:
            return ExitError(
                exit="n/a",
                message=f"Code did not return an action. Valid actions are: {valid_actions}",
                return_value=return_value,
            )

        action = str(action)
        chosen = resolve_exit(iteration.exits, action)
        if chosen is None:
            return ExitError(
                exit=action,
                message=f'Exit "{action}" not found. Valid actions are: {valid_actions}',
                return_value=return_value,
            )

        value = return_value.get("value")
        if chosen.adapter is not None:
            try:
                value = chosen.adapter.validate_python(value)
            except ValidationError as err:
                return ExitError(
                    exit=chosen.name,
                    message=f"Invalid return value for exit {chosen.name}: {format_validation_error(err)}",
                    return_value=return_value,
                )
            return_value = {"action": chosen.name, "value": value}

        if self.on_exit is not None:
            try:
                hook_result = self.on_exit(chosen, value)
                if inspect.isawaitable(hook_result):
                    await hook_result
            except Exception as err:  # noqa: BLE001 - reported as exit_error
                return ExitError(
                    exit=chosen.name,
                    message=f"Error executing exit {chosen.name}: {err}",
                    return_value=return_value,
                )

        logger.debug("Iteration %d exited via %s", iteration.number, chosen.name)
        return ExitSuccess(exit_name=chosen.name, return_value=value)
