"""Terminal statuses an iteration can end in."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class _Status(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class ExitSuccess(_Status):
    type: Literal["exit_success"] = "exit_success"
    exit_name: str
    return_value: Any = None


class ExitError(_Status):
    type: Literal["exit_error"] = "exit_error"
    exit: str
    message: str
    return_value: Any = None


class ExecutionErrorStatus(_Status):
    type: Literal["execution_error"] = "execution_error"
    message: str
    stack: str = "No stack trace available"


class InvalidCodeErrorStatus(_Status):
    type: Literal["invalid_code_error"] = "invalid_code_error"
    message: str


class ThinkingRequested(_Status):
    type: Literal["thinking_requested"] = "thinking_requested"
    variables: Any = None
    reason: str = "Thinking requested"


class CallbackRequested(_Status):
    type: Literal["callback_requested"] = "callback_requested"
    reason: str
    stack: str = ""


class AbortedStatus(_Status):
    type: Literal["aborted"] = "aborted"
    reason: str = "The operation was aborted"


IterationStatus = Annotated[
    Union[
        ExitSuccess,
        ExitError,
        ExecutionErrorStatus,
        InvalidCodeErrorStatus,
        ThinkingRequested,
        CallbackRequested,
        AbortedStatus,
    ],
    Field(discriminator="type"),
]

RETRYABLE_STATUSES = frozenset(
    {"thinking_requested", "exit_error", "execution_error", "invalid_code_error"}
)


def status_error(status: Any) -> str | None:
    """Human-readable error for failing statuses; ``None`` otherwise."""
    if status is None:
        return None
    if status.type == "exit_error":
        return status.message
    if status.type in ("execution_error", "invalid_code_error"):
        return status.message
    if status.type == "aborted":
        return status.reason
    if status.type == "callback_requested":
        return status.reason
    return None
