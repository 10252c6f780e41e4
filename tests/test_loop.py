"""Integration tests for the execution loop — inner pipeline + SubRunner."""

from __future__ import annotations

import asyncio

import pytest

from codeloop import (
    AbortSignal,
    ExecuteSignal,
    ExecutionLoop,
    Exit,
    GenerationError,
    GenerationResponse,
    GeneratorLike,
    LoopOptions,
    ObjectInstance,
    ObjectProperty,
    TraceEvent,
    Tool,
    execute,
    execute_sync,
)
from codeloop.core import Context
from codeloop.core.truncator import count_tokens, get_model_output_limit


# ---------------------------------------------------------------------------
# Mock generator
# ---------------------------------------------------------------------------


class MockGenerator:
    """Mock that returns queued responses and records every request."""

    def __init__(self, responses: list[str] | None = None):
        self._responses = list(responses or [])
        self.requests = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def generate(self, request):
        self.requests.append(request)
        text = self._responses.pop(0) if self._responses else ""
        return GenerationResponse(
            text=text, input_tokens=10, output_tokens=5, input_cost=0.01, model="mock"
        )


class FailingGenerator:
    async def generate(self, request):
        raise GenerationError("Generation aborted: provider down")


class AbortingGenerator:
    """Aborts the run while the call is in flight, then refuses like a real client."""

    def __init__(self, signal: AbortSignal):
        self.signal = signal
        self.calls = 0

    async def generate(self, request):
        self.calls += 1
        self.signal.abort("user left")
        raise GenerationError(f"Generation aborted: {self.signal.reason_text()}")


def fn(body: str) -> str:
    """Frame *body* the way the model is asked to."""
    return f"■fn_start\n{body}\n"


def run(responses: list[str], **kwargs):
    generator = kwargs.pop("generator", None) or MockGenerator(responses)
    result = asyncio.run(execute(generator=generator, **kwargs))
    return result, generator


def make_user() -> ObjectInstance:
    return ObjectInstance(
        name="user",
        properties=[
            ObjectProperty(name="id", value="u_1"),
            ObjectProperty(name="age", value=30, writable=True, schema=int),
        ],
    )


# ---------------------------------------------------------------------------
# Exits
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestExits:
    def test_default_done_exit(self):
        result, generator = run([fn('return {"action": "done"}')])
        assert result.is_success
        assert result.exit_name == "done"
        assert result.return_value is None
        assert len(result.iterations) == 1
        assert generator.call_count == 1

    def test_schema_coerces_value(self):
        result, _ = run(
            [fn('return {"action": "done", "value": "5"}')],
            exits=[Exit(name="done", schema=int)],
        )
        assert result.return_value == 5

    def test_alias_resolves_to_exit(self):
        result, _ = run(
            [fn('return {"action": "FINISH", "value": 1}')],
            exits=[Exit(name="done", aliases=["finish"])],
        )
        assert result.exit_name == "done"

    def test_unknown_exit_is_retried(self):
        result, generator = run(
            [
                fn('return {"action": "finish"}'),
                fn('return {"action": "done", "value": 1}'),
            ]
        )
        assert result.is_success
        first = result.iterations[0]
        assert first.status.type == "exit_error"
        assert first.error == 'Exit "finish" not found. Valid actions are: done, think'

        second_request = generator.requests[1]
        assert second_request.messages[1] == {
            "role": "assistant",
            "content": '■fn_start\nreturn {"action": "finish"}\n■fn_end',
        }
        assert 'Exit "finish" not found' in second_request.messages[2]["content"]

    def test_unknown_exit_lists_aliases(self):
        result, _ = run(
            [fn('return {"action": "nope"}')],
            exits=[Exit(name="done", aliases=("finish",))],
            options=LoopOptions(loop=1),
        )
        assert result.iterations[0].error == (
            'Exit "nope" not found. Valid actions are: done, finish, think'
        )

    def test_missing_action(self):
        result, _ = run([fn("x = 1")], options=LoopOptions(loop=1))
        assert result.iterations[0].error == (
            "Code did not return an action. Valid actions are: done, think"
        )

    def test_invalid_exit_value(self):
        result, _ = run(
            [fn('return {"action": "done", "value": "abc"}')],
            exits=[Exit(name="done", schema=int)],
            options=LoopOptions(loop=1),
        )
        assert result.iterations[0].error.startswith("Invalid return value for exit done:")

    def test_on_exit_receives_value(self):
        seen = []

        async def on_exit(exit_, value):
            seen.append((exit_.name, value))

        result, _ = run([fn('return {"action": "done", "value": [1, 2]}')], on_exit=on_exit)
        assert result.is_success
        assert seen == [("done", [1, 2])]

    def test_on_exit_can_veto(self):
        def on_exit(exit_, value):
            raise ValueError("not allowed yet")

        result, _ = run(
            [fn('return {"action": "done"}')], on_exit=on_exit, options=LoopOptions(loop=1)
        )
        first = result.iterations[0]
        assert first.status.type == "exit_error"
        assert first.error == "Error executing exit done: not allowed yet"

    def test_chat_mode_listen_exit(self):
        said = []
        message = Tool(name="message", handler=said.append)
        result, _ = run(
            [fn('message("Hello!")\nreturn {"action": "listen"}')], tools=[message]
        )
        assert result.exit_name == "listen"
        assert said == ["Hello!"]


# ---------------------------------------------------------------------------
# Loop control
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestLoopControl:
    def test_loop_limit(self):
        result, generator = run(
            [fn('raise ThinkSignal("hmm")')] * 3, options=LoopOptions(loop=3)
        )
        assert not result.is_success
        assert result.error == "Loop limit exceeded. Maximum allowed loops: 3"
        assert len(result.iterations) == 3
        assert generator.call_count == 3
        assert all(i.status.type == "thinking_requested" for i in result.iterations)

    def test_think_passes_variables_forward(self):
        result, generator = run(
            [
                fn('x = 41\nreturn {"action": "think", "x": x}'),
                fn('return {"action": "done", "value": x + 1}'),
            ]
        )
        assert result.return_value == 42
        assert result.iterations[0].status.variables == {"x": 41}
        assert "# x: int\n41" in generator.requests[1].messages[-1]["content"]

    def test_variables_survive_an_error(self):
        result, _ = run(
            [
                fn('y = 2\nraise ValueError("oops")'),
                fn('return {"action": "done", "value": y}'),
            ]
        )
        first = result.iterations[0]
        assert first.status.type == "execution_error"
        assert first.error == "ValueError: oops"
        assert result.return_value == 2

    def test_invalid_code_is_retried(self):
        result, generator = run(
            [fn("import os"), fn('return {"action": "done"}')]
        )
        first = result.iterations[0]
        assert first.status.type == "invalid_code_error"
        assert first.traces.of_type("code_execution") == []
        assert "The code you provided is invalid" in generator.requests[1].messages[-1]["content"]
        assert result.is_success

    def test_read_only_write_is_an_execution_error(self):
        result, generator = run(
            [fn('user.id = "u_2"'), fn('user.age = 31\nreturn {"action": "done"}')],
            objects=[make_user()],
        )
        first, second = result.iterations
        assert first.error == "AssignmentError: Property user.id is read-only and cannot be modified"
        assert first.mutations == []
        assert [(m.before, m.after) for m in second.mutations] == [(30, 31)]
        assert result.is_success

    def test_empty_output_fails_the_iteration(self):
        result, _ = run([""], options=LoopOptions(loop=1))
        first = result.iterations[0]
        assert first.status.type == "execution_error"
        assert first.error == "An unexpected error occurred: No output from LLM"
        assert "GenerationError" in first.status.stack

    def test_generator_errors_are_retried(self):
        result, _ = run([], generator=FailingGenerator(), options=LoopOptions(loop=2))
        assert result.error == "Loop limit exceeded. Maximum allowed loops: 2"
        assert all(
            i.error == "An unexpected error occurred: Generation aborted: provider down"
            for i in result.iterations
        )

    def test_callbacks_not_implemented(self):
        def approve(value):
            raise ExecuteSignal("needs approval")

        result, _ = run(
            [fn('x = 1\napprove()\nreturn {"action": "done"}')],
            tools=[Tool(name="approve", handler=approve)],
        )
        assert result.error == "Callbacks are not yet implemented"
        status = result.iterations[0].status
        assert status.type == "callback_requested"
        assert status.reason == "needs approval"
        assert status.stack == "x = 1\napprove()"

    def test_getters_evaluated_per_iteration(self):
        def instructions(ctx):
            return f"Attempt {len(ctx.iterations) + 1}"

        _, generator = run(
            [fn('raise ThinkSignal("look")'), fn('return {"action": "done"}')],
            instructions=instructions,
        )
        assert "Attempt 1" in generator.requests[0].system_prompt
        assert "Attempt 2" in generator.requests[1].system_prompt


# ---------------------------------------------------------------------------
# Abort
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestAbort:
    def test_aborted_before_execution(self):
        signal = AbortSignal()
        signal.abort("stop")
        result, generator = run([fn('return {"action": "done"}')], signal=signal)

        assert not result.is_success
        assert result.error == "stop"
        assert len(result.iterations) == 1
        assert generator.call_count == 0
        iteration = result.iterations[0]
        assert iteration.status.type == "aborted"
        assert iteration.traces.of_type("code_execution") == []
        (trace,) = iteration.traces.of_type("abort_signal")
        assert trace.reason == "The operation was aborted by user."

    def test_abort_during_generation_is_not_retried(self):
        signal = AbortSignal()
        generator = AbortingGenerator(signal)
        result, _ = run([], generator=generator, signal=signal, options=LoopOptions(loop=3))

        assert result.error == "user left"
        assert generator.calls == 1
        (iteration,) = result.iterations
        assert iteration.status.type == "aborted"
        assert len(iteration.traces.of_type("abort_signal")) == 1

    def test_aborted_while_running(self):
        signal = AbortSignal()
        stop = Tool(name="stop", handler=lambda value: signal.abort("user stop"))
        result, generator = run(
            [fn('stop()\nreturn {"action": "done"}')], tools=[stop], signal=signal
        )
        assert result.error == "user stop"
        assert generator.call_count == 1
        iteration = result.iterations[0]
        assert iteration.status.type == "aborted"
        assert len(iteration.traces.of_type("code_execution")) == 1


# ---------------------------------------------------------------------------
# Requests, accounting and hooks
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestRequests:
    def test_request_fields(self):
        _, generator = run(
            [fn('return {"action": "done"}')], options=LoopOptions(temperature=0.2, model="m")
        )
        request = generator.requests[0]
        assert request.system_prompt.startswith("# Role")
        assert [m["role"] for m in request.messages] == ["user"]
        assert request.stop_sequences == ["■fn_end"]
        assert request.max_tokens == get_model_output_limit(LoopOptions().context_window)
        assert request.temperature == 0.2
        assert request.model == "m"

    def test_llm_accounting(self):
        result, _ = run([fn('return {"action": "done"}')])
        llm = result.iterations[0].llm
        assert llm.tokens == 15
        assert llm.spend == pytest.approx(0.01)
        assert llm.model == "mock"
        assert llm.output == '■fn_start\nreturn {"action": "done"}\n■fn_end'

    def test_messages_fit_small_window(self):
        window = 1_200
        result, _ = run(
            [fn('return {"action": "done"}')],
            options=LoopOptions(context_window=window),
        )
        messages = result.iterations[0].messages
        limit = window - get_model_output_limit(window)
        assert sum(count_tokens(m["content"]) for m in messages) <= limit
        assert result.is_success

    def test_mock_satisfies_protocol(self):
        assert isinstance(MockGenerator(), GeneratorLike)

    def test_execute_sync(self):
        result = execute_sync(
            generator=MockGenerator([fn('return {"action": "done", "value": 3}')])
        )
        assert result.return_value == 3


@pytest.mark.unit
class TestHooks:
    def test_on_trace_receives_events_in_order(self):
        events: list[TraceEvent] = []
        result, _ = run(
            [fn('print("hi")\nreturn {"action": "done"}')], on_trace=events.append
        )
        assert [e.trace.type for e in events] == ["llm_call", "log", "code_execution"]
        assert {e.iteration for e in events} == {1}
        assert result.iterations[0].traces.subscriber_count == 0

    def test_async_on_trace_is_awaited(self):
        seen = []

        async def on_trace(event):
            await asyncio.sleep(0)
            seen.append(event.trace.type)

        run([fn('return {"action": "done"}')], on_trace=on_trace)
        assert seen == ["llm_call", "code_execution"]

    def test_on_iteration_end_called_per_iteration(self):
        ended = []

        async def on_iteration_end(iteration):
            ended.append((iteration.number, iteration.status.type))

        run(
            [fn('raise ThinkSignal("look")'), fn('return {"action": "done"}')],
            on_iteration_end=on_iteration_end,
        )
        assert ended == [(1, "thinking_requested"), (2, "exit_success")]

    def test_on_iteration_end_failure_is_isolated(self):
        def on_iteration_end(iteration):
            raise RuntimeError("hook bug")

        result, _ = run([fn('return {"action": "done"}')], on_iteration_end=on_iteration_end)
        assert result.is_success

    def test_loop_can_be_driven_directly(self):
        context = Context(exits=[Exit(name="done", schema=int)])
        loop = ExecutionLoop(context, MockGenerator([fn('return {"action": "done", "value": 7}')]))
        result = asyncio.run(loop.run())
        assert result.return_value == 7
        assert result.context is context
