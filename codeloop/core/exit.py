"""Exits — the declared ways an execution may legitimately end."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from pydantic import TypeAdapter

from .schema import adapter_for

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")

# Always available; handled before exits are looked up
THINK_ACTION = "think"


def validate_name(kind: str, name: str) -> str:
    """Names are identifiers that may also contain dashes."""
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise ValueError(f"Invalid {kind} name {name!r}")
    return name


@dataclass(frozen=True)
class Exit:
    """A named terminal action with optional aliases and value schema.

    Example::

        done = Exit(name="done", description="Task finished", schema=list[str])
    """

    name: str
    description: str = ""
    aliases: tuple[str, ...] = ()
    schema: Any = None
    _adapter: Optional[TypeAdapter] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        validate_name("exit", self.name)
        object.__setattr__(self, "aliases", tuple(self.aliases))
        for alias in self.aliases:
            validate_name("exit alias", alias)
        for label in (self.name, *self.aliases):
            if label.lower() == THINK_ACTION:
                raise ValueError(f"{label!r} is reserved and cannot name an exit")
        object.__setattr__(self, "_adapter", adapter_for(self.schema))

    @property
    def adapter(self) -> Optional[TypeAdapter]:
        return self._adapter

    @property
    def has_schema(self) -> bool:
        return self._adapter is not None


def resolve_exit(exits: Iterable[Exit], action: str) -> Optional[Exit]:
    """Find the exit for *action*: names first, then aliases (case-insensitive)."""
    exits = list(exits)
    lowered = action.lower()
    for candidate in exits:
        if candidate.name.lower() == lowered:
            return candidate
    for candidate in exits:
        if any(a.lower() == lowered for a in candidate.aliases):
            return candidate
    return None


def action_names(exits: Iterable[Exit]) -> list[str]:
    """Every label that resolves to an exit, lowercased, then ``think``."""
    names: list[str] = []
    for ex in exits:
        for label in (ex.name, *ex.aliases):
            if label.lower() not in names:
                names.append(label.lower())
    return names + [THINK_ACTION]


def check_unique(exits: Iterable[Exit]) -> None:
    seen: set[str] = set()
    for ex in exits:
        for label in (ex.name, *ex.aliases):
            key = label.lower()
            if key in seen:
                raise ValueError(f"Duplicate exit name or alias: {label!r}")
            seen.add(key)


DEFAULT_EXIT = Exit(name="done", description="When the task is completed")
LISTEN_EXIT = Exit(
    name="listen",
    description="Wait for the user to respond to the last message",
)
