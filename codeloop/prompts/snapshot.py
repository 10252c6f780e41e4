"""Snapshot data carried to the resume prompts.

Capturing and resuming a suspended run is not implemented; these types only
describe what the prompt renderers need.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MAX_SNAPSHOT_VALUE_CHARS = 4_000


class SnapshotVariable(BaseModel):
    """One variable alive at the interrupted line."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    type: str = "Any"
    value: Any = None
    preview: str = ""
    truncated: bool = Field(default=False, description="True when only a preview was kept")

    @classmethod
    def capture(cls, name: str, value: Any, max_chars: int = MAX_SNAPSHOT_VALUE_CHARS) -> "SnapshotVariable":
        text = repr(value)
        if len(text) <= max_chars:
            return cls(name=name, type=type(value).__name__, value=value, preview=text)
        return cls(
            name=name,
            type=type(value).__name__,
            preview=text[:max_chars],
            truncated=True,
        )


class Snapshot(BaseModel):
    variables: list[SnapshotVariable] = Field(default_factory=list)
    stack: str = Field(default="", description="Code executed up to the interrupted line")


class SnapshotCallback(BaseModel):
    description: str = ""


class SnapshotResult(BaseModel):
    """Outcome of the asynchronous operation a snapshot was waiting on."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: Literal["resolved", "rejected"]
    snapshot: Snapshot
    callback: SnapshotCallback = Field(default_factory=SnapshotCallback)
    result: Any = None
