"""Immutable step context — the single object that flows through every step."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any


@dataclass(frozen=True)
class StepContext:
    """Frozen context object passed from step to step.

    The engine knows nothing about the domain: concrete pipelines subclass
    ``StepContext`` and add their own named fields.  Ad-hoc data that does
    not deserve a named field goes in ``metadata``.

    Steps never mutate the incoming context — they call ``.replace()`` to
    produce a new one.
    """

    # Loop counter (set by the runner, not by steps)
    iteration: int = 0

    metadata: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        # Coerce plain dict → MappingProxyType so mutation is a hard runtime error
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(self.metadata))

    def replace(self, **changes: Any) -> "StepContext":
        """Return a new context with the given fields replaced."""
        return dataclasses.replace(self, **changes)
