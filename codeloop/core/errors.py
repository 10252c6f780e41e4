"""Error and signal taxonomy.

Two families live here:

* **Signals** (``VMSignal`` and subclasses) are intentional control-flow
  requests raised from generated code or from tools.  They are expected and
  never logged as bugs.
* **Errors** (``CodeloopError`` and subclasses) are genuine failures.  The
  recoverable ones end an iteration with a specific status and are fed back
  to the model.
"""

from __future__ import annotations

import json
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


class VMSignal(Exception):
    """Base class for intentional control-flow interrupts."""


class ThinkSignal(VMSignal):
    """The model wants to reflect before continuing.

    ``variables`` are rendered back to the model in the follow-up message.
    """

    def __init__(self, reason: str = "Thinking requested", variables: Any = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.variables = variables if variables is not None else {}


class VMInterruptSignal(VMSignal):
    """An asynchronous tool asked to suspend execution.

    The tool wrapper fills ``tool_call`` with the name, schemas and input of
    the call that raised; the sandbox fills ``truncated_code`` with the
    snippet up to the interrupted line.
    """

    def __init__(self, message: str = "Execution interrupted") -> None:
        super().__init__(message)
        self.message = message
        self.tool_call: Optional[dict[str, Any]] = None
        self.truncated_code: str = ""


class ExecuteSignal(VMInterruptSignal):
    """A tool requested that execution be handed back to the caller."""


class AbortedSignal(VMSignal):
    """The run's abort signal was observed before or while code was executing."""

    def __init__(self, reason: str = "The operation was aborted") -> None:
        super().__init__(reason)
        self.reason = reason


def serialize_signal(signal: VMSignal) -> str:
    """Render a signal as a single-line description for traces and prompts."""
    payload: dict[str, Any] = {"type": type(signal).__name__, "message": str(signal)}
    tool_call = getattr(signal, "tool_call", None)
    if tool_call:
        payload["tool"] = tool_call.get("name")
    return json.dumps(payload, default=repr)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CodeloopError(Exception):
    """Base class for every failure raised by this library."""


class InvalidCodeError(CodeloopError):
    """The generated code cannot be parsed, or uses a forbidden construct."""

    def __init__(self, message: str, code: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class CodeExecutionError(CodeloopError):
    """The generated code raised an exception that is not a signal."""

    def __init__(self, message: str, stack: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.stack = stack or "No stack trace available"


class AssignmentError(CodeloopError):
    """A write to an object property was rejected."""


class ToolInputError(CodeloopError):
    """A tool was called with input that does not match its schema."""


class GenerationError(CodeloopError):
    """The content-generation capability returned no usable output."""


class TruncationError(CodeloopError):
    """Messages could not be made to fit the token budget."""
