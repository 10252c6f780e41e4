"""Readable previews of runtime values for VM messages."""

from __future__ import annotations

import logging
import pprint
from typing import Any, Optional

from ..core.schema import to_plain
from ..core.truncator import wrap_content

logger = logging.getLogger(__name__)


def describe_type(value: Any) -> str:
    name = type(value).__name__
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        unit = "key" if isinstance(value, dict) else "item"
        count = len(value)
        return f"{name} ({count} {unit}{'' if count == 1 else 's'})"
    if isinstance(value, str):
        return f"str ({len(value)} chars)"
    return name


def inspect_value(value: Any, name: Optional[str] = None) -> Optional[str]:
    """Render *value* for the model, marked as truncatable.

    Returns ``None`` when the value cannot be rendered at all.
    """
    try:
        plain = to_plain(value)
        body = plain if isinstance(plain, str) else pprint.pformat(plain, width=100, sort_dicts=False)
    except Exception:  # noqa: BLE001 - arbitrary user objects
        logger.debug("Could not render value of type %s", type(value).__name__, exc_info=True)
        return None

    header = f"# {name}: {describe_type(value)}" if name else f"# {describe_type(value)}"
    return f"{header}\n{wrap_content(body, preserve='start')}"
