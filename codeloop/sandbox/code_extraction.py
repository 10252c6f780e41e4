"""Pure functions for extracting the code block from an assistant response."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

FN_START = "■fn_start"
FN_END = "■fn_end"


@dataclass(frozen=True)
class AssistantResponse:
    """Code extracted from a model response, plus the normalised raw text."""

    code: str
    raw: str


def parse_assistant_response(response: str) -> AssistantResponse:
    """Extract the code the model wrote.

    Layered, first match wins:
    1. Text between ``■fn_start`` and ``■fn_end`` (the end marker is
       usually cut off by the stop sequence).
    2. A fenced ````` ```python ````` block.
    3. The whole response.

    ``raw`` is the code re-framed with both markers, which is what the
    model sees as its own previous turn.
    """
    code = extract_marked_block(response)
    if code is None:
        blocks = extract_fenced_blocks(response)
        code = blocks[0] if blocks else response
    code = code.strip("\n").rstrip()
    return AssistantResponse(code=code, raw=f"{FN_START}\n{code}\n{FN_END}")


def extract_marked_block(response: str) -> Optional[str]:
    start = response.find(FN_START)
    if start == -1:
        return None
    body = response[start + len(FN_START) :]
    end = body.find(FN_END)
    if end != -1:
        body = body[:end]
    return _strip_fence(body)


def extract_fenced_blocks(response: str) -> list[str]:
    """Extract fenced code blocks: ```python first, then bare ``` blocks."""
    matches = re.findall(r"```(?:python|py)\s*\n(.*?)```", response, re.DOTALL)
    if matches:
        return matches
    matches = re.findall(r"```\s*\n(.*?)```", response, re.DOTALL)
    return [m for m in matches if looks_like_python(m)]


def _strip_fence(body: str) -> str:
    """Models sometimes fence the code inside the markers."""
    stripped = body.strip()
    match = re.match(r"^```[a-zA-Z]*\s*\n(.*?)\n?```$", stripped, re.DOTALL)
    return match.group(1) if match else body


def looks_like_python(code: str) -> bool:
    indicators = [
        "return ",
        "await ",
        "print(",
        "for ",
        "if ",
        "while ",
        "def ",
        "= ",
        "==",
        "+=",
        "try:",
        "except",
        "with ",
    ]
    return any(ind in code for ind in indicators)
