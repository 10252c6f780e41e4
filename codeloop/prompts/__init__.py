"""Prompt builder: system, initial and follow-up messages."""

from .dual_mode import (
    STOP_TOKENS,
    code_execution_error_message,
    follow_up_message,
    initial_user_message,
    invalid_code_message,
    snapshot_rejected_message,
    snapshot_resolved_message,
    stop_tokens,
    system_message,
    thinking_message,
)
from .inspect import inspect_value
from .snapshot import Snapshot, SnapshotResult, SnapshotVariable
from .templates import replace_placeholders
from .typings import object_typings, schema_to_type, tool_typings

__all__ = [
    "STOP_TOKENS",
    "Snapshot",
    "SnapshotResult",
    "SnapshotVariable",
    "code_execution_error_message",
    "follow_up_message",
    "initial_user_message",
    "inspect_value",
    "invalid_code_message",
    "object_typings",
    "replace_placeholders",
    "schema_to_type",
    "snapshot_rejected_message",
    "snapshot_resolved_message",
    "stop_tokens",
    "system_message",
    "thinking_message",
    "tool_typings",
]
