"""Shared fixtures and reusable dummy steps for pipeline engine tests.

No codeloop imports — every step here is a generic dummy that only uses the
pipeline primitives (StepContext, StepProtocol).
"""

from __future__ import annotations

import asyncio
import threading
from types import MappingProxyType

import pytest

from pipeline import StepContext

# ---------------------------------------------------------------------------
# Reusable dummy step classes
# ---------------------------------------------------------------------------


class Noop:
    """Pass-through step — does not change context."""

    requires = frozenset()
    provides = frozenset()

    def __call__(self, ctx: StepContext) -> StepContext:
        return ctx


class SetA:
    """Writes metadata['a'] = 1.  No requirements."""

    requires = frozenset()
    provides = frozenset({"a"})

    def __call__(self, ctx: StepContext) -> StepContext:
        return ctx.replace(metadata=MappingProxyType({**ctx.metadata, "a": 1}))


class SetB:
    """Reads 'a', writes metadata['b'] = metadata['a'] + 1."""

    requires = frozenset({"a"})
    provides = frozenset({"b"})

    def __call__(self, ctx: StepContext) -> StepContext:
        return ctx.replace(
            metadata=MappingProxyType({**ctx.metadata, "b": ctx.metadata["a"] + 1})
        )


class SetC:
    """Reads 'b', writes metadata['c'] = metadata['b'] * 2."""

    requires = frozenset({"b"})
    provides = frozenset({"c"})

    def __call__(self, ctx: StepContext) -> StepContext:
        return ctx.replace(
            metadata=MappingProxyType({**ctx.metadata, "c": ctx.metadata["b"] * 2})
        )


class Boom:
    """Always raises RuntimeError."""

    requires = frozenset()
    provides = frozenset()

    def __call__(self, ctx: StepContext) -> StepContext:
        raise RuntimeError("boom")


class AsyncStep:
    """Async step — sets metadata['async_done'] = True."""

    requires = frozenset()
    provides = frozenset({"async_done"})

    async def __call__(self, ctx: StepContext) -> StepContext:
        await asyncio.sleep(0)  # yield to event loop
        return ctx.replace(
            metadata=MappingProxyType({**ctx.metadata, "async_done": True})
        )


class AsyncBoom:
    """Async step that raises after yielding once."""

    requires = frozenset()
    provides = frozenset()

    async def __call__(self, ctx: StepContext) -> StepContext:
        await asyncio.sleep(0)
        raise ValueError("async boom")


class Recorder:
    """Records every ctx it receives via call_log (thread-safe)."""

    requires = frozenset()
    provides = frozenset()

    def __init__(self):
        self.call_log: list[StepContext] = []
        self._lock = threading.Lock()

    def __call__(self, ctx: StepContext) -> StepContext:
        with self._lock:
            self.call_log.append(ctx)
        return ctx


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def noop():
    return Noop()


@pytest.fixture
def set_a():
    return SetA()


@pytest.fixture
def set_b():
    return SetB()


@pytest.fixture
def set_c():
    return SetC()


@pytest.fixture
def boom():
    return Boom()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def base_ctx():
    """A minimal StepContext on iteration 1."""
    return StepContext(iteration=1)
