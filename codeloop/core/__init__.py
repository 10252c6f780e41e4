"""Core data model: context, iterations, exits, tools, objects, traces."""

from .abort import AbortSignal
from .context import Catalogue, Context, Iteration, LLMCallInfo, Mutation
from .errors import (
    AbortedSignal,
    AssignmentError,
    CodeExecutionError,
    CodeloopError,
    ExecuteSignal,
    GenerationError,
    InvalidCodeError,
    ThinkSignal,
    ToolInputError,
    TruncationError,
    VMInterruptSignal,
    VMSignal,
)
from .exit import DEFAULT_EXIT, LISTEN_EXIT, Exit, resolve_exit
from .getter import Computed, Static, as_getter
from .objects import ObjectInstance, ObjectProperty
from .outcome import Aborted, Failure, Interrupt, Ok, Outcome, Think
from .status import (
    AbortedStatus,
    CallbackRequested,
    ExecutionErrorStatus,
    ExitError,
    ExitSuccess,
    InvalidCodeErrorStatus,
    IterationStatus,
    ThinkingRequested,
)
from .tool import Tool
from .traces import Trace, TraceLog
from .transcript import TranscriptMessage
from .truncator import get_model_output_limit, truncate_wrapped_content, wrap_content

__all__ = [
    "AbortSignal",
    "Aborted",
    "AbortedSignal",
    "AbortedStatus",
    "AssignmentError",
    "CallbackRequested",
    "Catalogue",
    "CodeExecutionError",
    "CodeloopError",
    "Computed",
    "Context",
    "DEFAULT_EXIT",
    "ExecuteSignal",
    "ExecutionErrorStatus",
    "Exit",
    "ExitError",
    "ExitSuccess",
    "Failure",
    "GenerationError",
    "Interrupt",
    "InvalidCodeError",
    "InvalidCodeErrorStatus",
    "Iteration",
    "IterationStatus",
    "LISTEN_EXIT",
    "LLMCallInfo",
    "Mutation",
    "ObjectInstance",
    "ObjectProperty",
    "Ok",
    "Outcome",
    "Static",
    "Think",
    "ThinkSignal",
    "ThinkingRequested",
    "Tool",
    "ToolInputError",
    "Trace",
    "TraceLog",
    "TranscriptMessage",
    "TruncationError",
    "VMInterruptSignal",
    "VMSignal",
    "as_getter",
    "get_model_output_limit",
    "resolve_exit",
    "truncate_wrapped_content",
    "wrap_content",
]
