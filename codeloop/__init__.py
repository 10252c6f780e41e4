"""codeloop — an agentic code-execution loop.

The model writes Python, a sandbox runs it, and the loop retries, thinks
or exits depending on what the code did.
"""

from .config import LoopOptions
from .core import (
    AbortSignal,
    AbortedSignal,
    AssignmentError,
    CodeExecutionError,
    CodeloopError,
    Context,
    ExecuteSignal,
    Exit,
    GenerationError,
    InvalidCodeError,
    Iteration,
    ObjectInstance,
    ObjectProperty,
    ThinkSignal,
    Tool,
    ToolInputError,
    TranscriptMessage,
    TruncationError,
    VMInterruptSignal,
    VMSignal,
)
from .loop import ExecutionLoop, ExecutionResult, TraceEvent, execute, execute_sync
from .protocols import GenerationRequest, GenerationResponse, GeneratorLike

__all__ = [
    "AbortSignal",
    "AbortedSignal",
    "AssignmentError",
    "CodeExecutionError",
    "CodeloopError",
    "Context",
    "ExecuteSignal",
    "ExecutionLoop",
    "ExecutionResult",
    "Exit",
    "GenerationError",
    "GenerationRequest",
    "GenerationResponse",
    "GeneratorLike",
    "InvalidCodeError",
    "Iteration",
    "LoopOptions",
    "ObjectInstance",
    "ObjectProperty",
    "ThinkSignal",
    "Tool",
    "ToolInputError",
    "TraceEvent",
    "TranscriptMessage",
    "TruncationError",
    "VMInterruptSignal",
    "VMSignal",
    "execute",
    "execute_sync",
]
