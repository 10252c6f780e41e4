"""Unit tests for the core data model: context, iterations, exits, tools,
traces, outcomes, options and the truncator."""

from __future__ import annotations

import pytest

from codeloop.config import LoopOptions
from codeloop.core import (
    DEFAULT_EXIT,
    LISTEN_EXIT,
    Aborted,
    AbortedSignal,
    AbortSignal,
    Computed,
    Context,
    ExecuteSignal,
    Exit,
    ExitError,
    Interrupt,
    Mutation,
    ObjectInstance,
    ObjectProperty,
    Ok,
    Static,
    Think,
    ThinkingRequested,
    ThinkSignal,
    Tool,
    ToolInputError,
    TraceLog,
    TruncationError,
    as_getter,
    get_model_output_limit,
    resolve_exit,
    truncate_wrapped_content,
    wrap_content,
)
from codeloop.core.errors import CodeExecutionError, VMInterruptSignal
from codeloop.core.exit import action_names, check_unique
from codeloop.core.outcome import from_signal, to_signal
from codeloop.core.status import (
    RETRYABLE_STATUSES,
    AbortedStatus,
    CallbackRequested,
    ExitSuccess,
    status_error,
)
from codeloop.core.traces import LogTrace, PropertyTrace
from codeloop.core.transcript import TranscriptMessage, render_transcript
from codeloop.core.truncator import (
    TRUNCATION_NOTICE,
    count_tokens,
    truncate_text,
    unwrap_content,
)


def noop_handler(value):
    return value


# ---------------------------------------------------------------------------
# Signals, errors and outcomes
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestSignals:
    def test_think_signal_defaults(self):
        signal = ThinkSignal()
        assert signal.reason == "Thinking requested"
        assert signal.variables == {}

    def test_execute_signal_is_interrupt(self):
        signal = ExecuteSignal("hand back")
        assert isinstance(signal, VMInterruptSignal)
        assert signal.tool_call is None
        assert signal.truncated_code == ""

    def test_code_execution_error_default_stack(self):
        assert CodeExecutionError("boom").stack == "No stack trace available"


@pytest.mark.unit
class TestOutcome:
    def test_think_signal_maps_to_think(self):
        outcome = from_signal(ThinkSignal("look", {"a": 1}))
        assert isinstance(outcome, Think)
        assert outcome.variables == {"a": 1}
        assert outcome.reason == "look"

    def test_interrupt_signal_maps_to_interrupt(self):
        signal = ExecuteSignal("wait")
        outcome = from_signal(signal)
        assert isinstance(outcome, Interrupt)
        assert outcome.signal is signal

    def test_aborted_signal_maps_to_aborted(self):
        assert from_signal(AbortedSignal("stop")) == Aborted("stop")

    def test_to_signal_round_trips_aborted(self):
        signal = to_signal(Aborted("stop"))
        assert isinstance(signal, AbortedSignal)
        assert signal.reason == "stop"

    def test_ok_has_no_signal(self):
        assert to_signal(Ok(1)) is None


# ---------------------------------------------------------------------------
# Value-or-getter
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestGetter:
    def test_plain_value_is_static(self):
        assert as_getter("x") == Static("x")

    def test_none_uses_default(self):
        assert as_getter(None, []).resolve(None) == []

    def test_callable_is_computed(self):
        getter = as_getter(lambda ctx: ctx * 2)
        assert isinstance(getter, Computed)
        assert getter.resolve(21) == 42

    def test_classes_are_values(self):
        assert isinstance(as_getter(int), Static)


# ---------------------------------------------------------------------------
# Exits, tools and objects
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestExit:
    def test_invalid_name_rejected(self):
        with pytest.raises(ValueError, match="Invalid exit name"):
            Exit(name="bad name")

    def test_resolve_by_name_is_case_insensitive(self):
        done = Exit(name="done")
        assert resolve_exit([done], "DONE") is done

    def test_resolve_by_alias(self):
        done = Exit(name="done", aliases=["finish"])
        assert resolve_exit([done], "Finish") is done

    def test_names_win_over_aliases(self):
        a = Exit(name="a", aliases=["b"])
        b = Exit(name="b")
        assert resolve_exit([a, b], "b") is b

    def test_unknown_action(self):
        assert resolve_exit([DEFAULT_EXIT], "nope") is None

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate exit"):
            check_unique([Exit(name="a"), Exit(name="A")])

    def test_schema_builds_adapter(self):
        assert Exit(name="n", schema=int).has_schema
        assert not Exit(name="n").has_schema

    @pytest.mark.parametrize(
        "kwargs",
        [{"name": "think"}, {"name": "Think"}, {"name": "done", "aliases": ["THINK"]}],
    )
    def test_think_is_reserved(self, kwargs):
        with pytest.raises(ValueError, match="reserved"):
            Exit(**kwargs)

    def test_action_names_include_aliases(self):
        exits = [Exit(name="Done", aliases=["finish", "DONE"]), Exit(name="reply")]
        assert action_names(exits) == ["done", "finish", "reply", "think"]

    def test_action_names_default(self):
        assert action_names([DEFAULT_EXIT]) == ["done", "think"]


@pytest.mark.unit
class TestTool:
    def make_add(self):
        return Tool(
            name="add",
            handler=lambda v: v["a"] + v["b"],
            input={"a": int, "b": int},
            output=int,
        )

    def test_dict_shorthand_input_is_validated(self):
        assert self.make_add().parse_input({"a": "1", "b": 2}) == {"a": 1, "b": 2}

    def test_invalid_input_raises(self):
        with pytest.raises(ToolInputError, match="Invalid input for tool add"):
            self.make_add().parse_input({"a": 1})

    def test_execute_validates_then_calls(self):
        assert self.make_add().execute({"a": 1, "b": 2}) == 3

    def test_preview_falls_back_to_raw(self):
        assert self.make_add().preview_input({"a": "x"}) == {"a": "x"}

    def test_is_async(self):
        async def handler(value):
            return value

        assert Tool(name="t", handler=handler).is_async
        assert not Tool(name="t", handler=noop_handler).is_async


@pytest.mark.unit
class TestObjectInstance:
    def test_duplicate_member_rejected(self):
        with pytest.raises(ValueError, match="Duplicate member"):
            ObjectInstance(
                name="o",
                properties=[ObjectProperty(name="x")],
                tools=[Tool(name="x", handler=noop_handler)],
            )

    def test_get_property(self):
        obj = ObjectInstance(name="o", properties=[ObjectProperty(name="x", value=1)])
        assert obj.get_property("x").value == 1
        assert obj.get_property("y") is None


# ---------------------------------------------------------------------------
# Context and iterations
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestContext:
    def test_worker_mode_defaults_to_done_exit(self):
        iteration = Context().next_iteration()
        assert iteration.catalogue.mode == "worker"
        assert iteration.exits == (DEFAULT_EXIT,)

    def test_chat_mode_defaults_to_listen_exit(self):
        context = Context(tools=[Tool(name="message", handler=noop_handler)])
        iteration = context.next_iteration()
        assert iteration.catalogue.mode == "chat"
        assert iteration.exits == (LISTEN_EXIT,)

    def test_getters_are_evaluated_every_iteration(self):
        calls: list[int] = []

        def instructions(ctx):
            calls.append(1)
            return f"call {len(calls)}"

        context = Context(instructions=instructions)
        assert context.next_iteration().catalogue.instructions == "call 1"
        assert context.next_iteration().catalogue.instructions == "call 2"

    def test_transcript_dicts_are_validated(self):
        context = Context(transcript=[{"role": "user", "content": "hi"}])
        (message,) = context.next_iteration().catalogue.transcript
        assert isinstance(message, TranscriptMessage)

    def test_duplicate_object_and_tool_names_rejected(self):
        context = Context(
            objects=[ObjectInstance(name="search")],
            tools=[Tool(name="search", handler=noop_handler)],
        )
        with pytest.raises(ValueError, match="Duplicate object or tool name"):
            context.next_iteration()

    def test_loop_limit(self):
        context = Context(options=LoopOptions(loop=1))
        context.next_iteration()
        with pytest.raises(RuntimeError, match="Maximum allowed loops: 1"):
            context.next_iteration()

    def test_variables_carry_forward(self):
        context = Context()
        first = context.next_iteration()
        first.variables = {"x": 1}
        first.end(ExitError(exit="n/a", message="missing action"))
        assert context.next_iteration().variables == {"x": 1}

    def test_think_variables_replace_carried_ones(self):
        context = Context()
        first = context.next_iteration()
        first.variables = {"x": 1}
        first.end(ThinkingRequested(variables={"y": 2}))
        assert context.next_iteration().variables == {"y": 2}

    def test_iterations_is_a_copy(self):
        context = Context()
        context.next_iteration()
        context.iterations.clear()
        assert len(context.iterations) == 1


@pytest.mark.unit
class TestIteration:
    def test_end_freezes_the_record(self):
        iteration = Context().next_iteration()
        iteration.end(ExitSuccess(exit_name="done"))
        assert iteration.is_ended
        assert iteration.duration_ms is not None
        with pytest.raises(RuntimeError, match="has ended"):
            iteration.code = "x = 1"

    def test_end_twice_raises(self):
        iteration = Context().next_iteration()
        iteration.end(ExitSuccess(exit_name="done"))
        with pytest.raises(RuntimeError, match="already ended"):
            iteration.end(ExitSuccess(exit_name="done"))

    def test_mutations_rejected_after_end(self):
        iteration = Context().next_iteration()
        iteration.track_mutation(Mutation(object="o", property="p", before=1, after=2))
        iteration.end(ExitSuccess(exit_name="done"))
        assert len(iteration.mutations) == 1
        with pytest.raises(RuntimeError):
            iteration.track_mutation(Mutation(object="o", property="p"))

    def test_traces_closed_on_end(self):
        iteration = Context().next_iteration()
        iteration.end(ExitSuccess(exit_name="done"))
        iteration.traces.push(LogTrace(message="late"))
        assert len(iteration.traces) == 0

    def test_error_text(self):
        iteration = Context().next_iteration()
        assert iteration.error is None
        iteration.end(ExitError(exit="x", message="bad exit"))
        assert iteration.error == "bad exit"


@pytest.mark.unit
class TestStatus:
    def test_retryable_statuses(self):
        assert RETRYABLE_STATUSES == {
            "thinking_requested",
            "exit_error",
            "execution_error",
            "invalid_code_error",
        }

    def test_status_error(self):
        assert status_error(ExitSuccess(exit_name="done")) is None
        assert status_error(AbortedStatus(reason="stop")) == "stop"
        assert status_error(CallbackRequested(reason="wait")) == "wait"
        assert status_error(None) is None


# ---------------------------------------------------------------------------
# Traces and abort
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestTraceLog:
    def test_subscribers_receive_batches(self):
        log = TraceLog()
        received: list[list] = []
        log.on_push(received.append)
        log.push(LogTrace(message="a"), LogTrace(message="b"))
        assert [[t.message for t in batch] for batch in received] == [["a", "b"]]

    def test_failing_subscriber_does_not_break_push(self):
        log = TraceLog()
        received: list = []

        def broken(batch):
            raise RuntimeError("subscriber bug")

        log.on_push(broken)
        log.on_push(received.extend)
        log.push(LogTrace(message="a"))
        assert len(received) == 1
        assert len(log) == 1

    def test_unsubscribe(self):
        log = TraceLog()
        unsubscribe = log.on_push(lambda batch: None)
        assert log.subscriber_count == 1
        unsubscribe()
        unsubscribe()
        assert log.subscriber_count == 0

    def test_of_type(self):
        log = TraceLog()
        log.push(LogTrace(message="a"), PropertyTrace(object="o", property="p", value=1))
        assert [t.type for t in log.of_type("property")] == ["property"]


@pytest.mark.unit
class TestAbortSignal:
    def test_first_reason_wins(self):
        signal = AbortSignal()
        assert not signal.aborted
        signal.abort("stop")
        signal.abort("again")
        assert signal.aborted
        assert signal.reason_text() == "stop"

    def test_default_reason(self):
        assert AbortSignal().reason_text() == "The operation was aborted"


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestLoopOptions:
    def test_defaults(self):
        options = LoopOptions()
        assert options.loop == 3
        assert options.model is None

    @pytest.mark.parametrize(
        "kwargs", [{"loop": 0}, {"temperature": 3.0}, {"context_window": 0}, {"timeout": -1}]
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            LoopOptions(**kwargs)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CODELOOP_LOOP", "5")
        monkeypatch.setenv("CODELOOP_MODEL", "gpt-4o-mini")
        options = LoopOptions.from_env(temperature=0.0)
        assert options.loop == 5
        assert options.model == "gpt-4o-mini"
        assert options.temperature == 0.0

    def test_overrides_win_over_env(self, monkeypatch):
        monkeypatch.setenv("CODELOOP_LOOP", "5")
        assert LoopOptions.from_env(loop=2).loop == 2


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestTranscript:
    def test_empty(self):
        assert render_transcript([]) == "(empty transcript)"

    def test_named_speaker(self):
        text = render_transcript([TranscriptMessage(role="user", content=" hi ", name="Ada")])
        assert text == "<user (Ada)>\nhi\n</user>"


# ---------------------------------------------------------------------------
# Truncator
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestTruncator:
    def test_count_tokens_rounds_up(self):
        assert count_tokens("") == 0
        assert count_tokens("abcde") == 2

    @pytest.mark.parametrize(
        "window, expected", [(5_000, 1_000), (128_000, 12_800), (1_000_000, 16_000)]
    )
    def test_model_output_limit(self, window, expected):
        assert get_model_output_limit(window) == expected

    def test_wrap_and_unwrap(self):
        wrapped = wrap_content("abc", preserve="end", flex=2)
        assert wrapped != "abc"
        assert unwrap_content(wrapped) == "abc"

    def test_nested_wraps_collapse(self):
        wrapped = wrap_content("x " + wrap_content("inner"))
        assert wrapped.count("⟦wrap ") == 1
        assert unwrap_content(wrapped) == "x inner"

    def test_invalid_wrap_options(self):
        with pytest.raises(ValueError):
            wrap_content("x", preserve="middle")  # type: ignore[arg-type]
        with pytest.raises(ValueError):
            wrap_content("x", flex=0)

    @pytest.mark.parametrize("preserve", ["start", "end", "both"])
    def test_truncate_text_fits(self, preserve):
        text = "".join(str(i % 10) for i in range(1_000))
        out = truncate_text(text, 50, preserve)
        assert count_tokens(out) <= 50
        assert TRUNCATION_NOTICE in out

    def test_truncate_text_preserve_anchors(self):
        text = "a" * 500 + "z" * 500
        assert truncate_text(text, 50, "start").startswith("a")
        assert truncate_text(text, 50, "end").endswith("z")
        both = truncate_text(text, 50, "both")
        assert both.startswith("a") and both.endswith("z")

    def test_messages_within_budget_are_untouched_apart_from_markers(self):
        messages = [{"role": "user", "content": "hi " + wrap_content("there")}]
        assert truncate_wrapped_content(messages, 1_000) == [
            {"role": "user", "content": "hi there"}
        ]

    def test_wrapped_segments_shrink_first(self):
        messages = [{"role": "user", "content": "head " + wrap_content("x" * 4_000)}]
        (out,) = truncate_wrapped_content(messages, 100)
        assert out["content"].startswith("head xxx")
        assert "[truncated]" in out["content"]
        assert "⟦" not in out["content"]
        assert count_tokens(out["content"]) <= 100

    def test_higher_flex_gives_up_more(self):
        content = wrap_content("a" * 2_000, flex=1) + wrap_content("b" * 2_000, flex=4)
        (out,) = truncate_wrapped_content([{"role": "user", "content": content}], 500)
        assert out["content"].count("a") > out["content"].count("b")

    def test_raises_when_floors_cannot_fit(self):
        messages = [{"role": "system", "content": "s" * 1_000}]
        with pytest.raises(TruncationError):
            truncate_wrapped_content(messages, 100)

    def test_non_throwing_mode_trims_unwrapped_text(self):
        messages = [{"role": "system", "content": "s" * 1_000}]
        (out,) = truncate_wrapped_content(messages, 100, throw_on_failure=False)
        assert count_tokens(out["content"]) <= 100
        assert out["content"].endswith("s")

    def test_non_system_messages_trimmed_before_system(self):
        system = "a" * 400
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": "b" * 400},
        ]
        out = truncate_wrapped_content(messages, 150, throw_on_failure=False)
        assert out[0]["content"] == system
        assert count_tokens(out[1]["content"]) <= 50

    def test_blank_messages_dropped(self):
        messages = [
            {"role": "user", "content": "   "},
            {"role": "user", "content": "hi"},
        ]
        assert truncate_wrapped_content(messages, 1_000) == [{"role": "user", "content": "hi"}]
