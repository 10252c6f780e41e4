"""Structural protocol for pipeline steps."""

from __future__ import annotations

from collections.abc import Set as AbstractSet
from typing import Awaitable, Protocol, Union, runtime_checkable

from .context import StepContext


@runtime_checkable
class StepProtocol(Protocol):
    """Structural protocol that every step (and Pipeline) must satisfy.

    A step is either a plain callable returning the new context or a
    coroutine function resolving to it; the pipeline awaits whichever it
    gets.

    ``AbstractSet[str]`` accepts both ``set`` and ``frozenset``.
    """

    requires: AbstractSet[str]
    provides: AbstractSet[str]

    def __call__(
        self, ctx: StepContext
    ) -> Union[StepContext, Awaitable[StepContext]]: ...
