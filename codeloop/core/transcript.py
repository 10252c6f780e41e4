"""Conversation transcript passed in by the caller."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class TranscriptMessage(BaseModel):
    """One message of the conversation the agent is taking part in."""

    role: Literal["user", "assistant"] = Field(..., description="Who spoke")
    content: str = Field(..., description="What was said")
    name: Optional[str] = Field(default=None, description="Display name of the speaker")


def render_transcript(messages: list[TranscriptMessage]) -> str:
    """Render the transcript as tagged blocks for the system prompt."""
    if not messages:
        return "(empty transcript)"
    blocks = []
    for msg in messages:
        who = msg.role if not msg.name else f"{msg.role} ({msg.name})"
        blocks.append(f"<{who}>\n{msg.content.strip()}\n</{msg.role}>")
    return "\n".join(blocks)
