"""Fit message content into a token budget.

Prompt builders mark the parts of a message that may be shortened with
:func:`wrap_content`.  :func:`truncate_wrapped_content` then shrinks those
parts (and, as a last resort, everything else) until the messages fit,
removes the markers and drops messages left empty.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Literal, Union

from .errors import TruncationError

logger = logging.getLogger(__name__)

Preserve = Literal["start", "end", "both"]

CHARS_PER_TOKEN = 4
DEFAULT_MIN_TOKENS = 25
TRUNCATION_NOTICE = "\n... [truncated] ...\n"

_OPEN = "⟦wrap "
_CLOSE = "⟦/wrap⟧"
_WRAP_RE = re.compile(r"⟦wrap (\{.*?\})⟧(.*?)⟦/wrap⟧", re.DOTALL)

RESPONSE_LENGTH_BUFFER_MIN_TOKENS = 1_000
RESPONSE_LENGTH_BUFFER_MAX_TOKENS = 16_000
RESPONSE_LENGTH_BUFFER_PERCENTAGE = 0.1


def count_tokens(text: str) -> int:
    """Cheap token estimate: four characters per token, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def get_model_output_limit(input_length: int) -> int:
    """Tokens reserved for the model's answer: 10% clamped to [1000, 16000]."""
    return int(
        min(
            max(RESPONSE_LENGTH_BUFFER_PERCENTAGE * input_length, RESPONSE_LENGTH_BUFFER_MIN_TOKENS),
            RESPONSE_LENGTH_BUFFER_MAX_TOKENS,
        )
    )


def wrap_content(
    text: str,
    *,
    preserve: Preserve = "start",
    flex: float = 1.0,
    min_tokens: int = DEFAULT_MIN_TOKENS,
) -> str:
    """Mark *text* as truncatable.

    Args:
        preserve: Which part survives truncation: the ``start``, the ``end``,
            or ``both`` ends with the middle cut out.
        flex: Relative willingness to give up tokens; a segment with
            ``flex=4`` shrinks four times faster than one with ``flex=1``.
        min_tokens: Floor kept whenever the budget allows it.
    """
    if preserve not in ("start", "end", "both"):
        raise ValueError(f"Invalid preserve anchor {preserve!r}")
    if flex <= 0:
        raise ValueError("flex must be positive")
    # Nested wraps collapse into the outer one
    inner = unwrap_content(text)
    options = json.dumps({"preserve": preserve, "flex": flex, "min_tokens": min_tokens})
    return f"{_OPEN}{options}⟧{inner}{_CLOSE}"


def unwrap_content(text: str) -> str:
    """Remove truncation markers, keeping the wrapped text intact."""
    return _WRAP_RE.sub(lambda m: m.group(2), text)


@dataclass
class _Segment:
    text: str
    preserve: Preserve
    flex: float
    min_tokens: int
    budget: int

    @property
    def tokens(self) -> int:
        return count_tokens(self.text)


Part = Union[str, _Segment]


def _parse(content: str) -> list[Part]:
    parts: list[Part] = []
    cursor = 0
    for match in _WRAP_RE.finditer(content):
        if match.start() > cursor:
            parts.append(content[cursor : match.start()])
        options = json.loads(match.group(1))
        text = match.group(2)
        parts.append(
            _Segment(
                text=text,
                preserve=options.get("preserve", "start"),
                flex=float(options.get("flex", 1.0)),
                min_tokens=int(options.get("min_tokens", DEFAULT_MIN_TOKENS)),
                budget=count_tokens(text),
            )
        )
        cursor = match.end()
    if cursor < len(content):
        parts.append(content[cursor:])
    return parts


def _part_tokens(part: Part) -> int:
    return part.budget if isinstance(part, _Segment) else count_tokens(part)


def truncate_text(text: str, max_tokens: int, preserve: Preserve = "start") -> str:
    """Shorten *text* so that ``count_tokens(result) <= max_tokens``."""
    if count_tokens(text) <= max_tokens:
        return text
    if max_tokens <= 0:
        return ""
    keep = max_tokens * CHARS_PER_TOKEN - len(TRUNCATION_NOTICE)
    if keep <= 0:
        # No room for the notice; hard cut
        keep = max_tokens * CHARS_PER_TOKEN
        if preserve == "end":
            return text[-keep:]
        return text[:keep]
    if preserve == "start":
        return text[:keep] + TRUNCATION_NOTICE
    if preserve == "end":
        return TRUNCATION_NOTICE + text[-keep:]
    head = keep // 2
    tail = keep - head
    return text[:head] + TRUNCATION_NOTICE + (text[-tail:] if tail else "")


def _shrink(segments: list[_Segment], excess: int, respect_floor: bool) -> int:
    """Take up to *excess* tokens from *segments*, weighted by flex and size."""
    while excess > 0:
        floor = (lambda s: min(s.min_tokens, s.budget)) if respect_floor else (lambda s: 0)
        shrinkable = [s for s in segments if s.budget > floor(s)]
        if not shrinkable:
            break
        weights = [s.flex * s.budget for s in shrinkable]
        total_weight = sum(weights) or 1.0
        taken = 0
        for seg, weight in zip(shrinkable, weights):
            want = math.ceil(excess * weight / total_weight)
            cut = min(want, seg.budget - floor(seg), excess - taken)
            if cut > 0:
                seg.budget -= cut
                taken += cut
            if taken >= excess:
                break
        if taken == 0:
            break
        excess -= taken
    return excess


def _render(parts: list[Part]) -> str:
    out = []
    for part in parts:
        if isinstance(part, _Segment):
            out.append(truncate_text(part.text, part.budget, part.preserve))
        else:
            out.append(part)
    return "".join(out)


def truncate_wrapped_content(
    messages: list[dict[str, str]],
    token_limit: int,
    throw_on_failure: bool = True,
) -> list[dict[str, str]]:
    """Return *messages* shortened to fit *token_limit*.

    Wrapped segments give up tokens first, down to their ``min_tokens``
    floor.  If that is not enough, ``throw_on_failure`` decides between
    raising :class:`TruncationError` and cutting further: segments below
    their floors, then unwrapped text of the oldest non-system messages,
    then the system message.  Messages whose content ends up blank are
    dropped.
    """
    parsed = [_parse(m.get("content") or "") for m in messages]
    total = sum(_part_tokens(p) for parts in parsed for p in parts)
    excess = total - max(token_limit, 0)

    if excess > 0:
        segments = [p for parts in parsed for p in parts if isinstance(p, _Segment)]
        excess = _shrink(segments, excess, respect_floor=True)

        if excess > 0 and throw_on_failure:
            raise TruncationError(
                f"Cannot fit messages into {token_limit} tokens "
                f"({total} tokens, {excess} over after truncation)"
            )

        if excess > 0:
            logger.warning(
                "Truncation floors exceeded by %d tokens; cutting further", excess
            )
            excess = _shrink(segments, excess, respect_floor=False)

        if excess > 0:
            order = [i for i, m in enumerate(messages) if m.get("role") != "system"]
            order += [i for i, m in enumerate(messages) if m.get("role") == "system"]
            for index in order:
                if excess <= 0:
                    break
                parts = parsed[index]
                for j, part in enumerate(parts):
                    if excess <= 0:
                        break
                    if isinstance(part, _Segment):
                        continue
                    tokens = count_tokens(part)
                    keep = max(tokens - excess, 0)
                    parts[j] = truncate_text(part, keep, "end")
                    excess -= tokens - count_tokens(parts[j])

    result: list[dict[str, str]] = []
    for message, parts in zip(messages, parsed):
        content = _render(parts)
        if not content.strip():
            continue
        result.append({**message, "content": content})
    return result
