"""SubRunner — base class for runners that drive an internal Pipeline in a loop.

Subclasses provide the template methods:

- ``_build_inner_pipeline()``  → the per-iteration step sequence
- ``_build_initial_context()`` → first iteration's context
- ``_is_done(ctx)``            → termination predicate
- ``_extract_result(ctx)``     → pull the final result from the context
- ``_accumulate(ctx)``         → build next iteration's context from current

and may override the hooks ``_on_step_error`` (an exception escaped the
inner pipeline), ``_after_iteration`` (runs after every pass) and
``_on_timeout`` (*max_iterations* reached without termination).
"""

from __future__ import annotations

import abc
from typing import Any

from .context import StepContext
from .pipeline import Pipeline


class SubRunner(abc.ABC):
    """Base for runners that execute an internal Pipeline in a loop."""

    def __init__(self, *, max_iterations: int = 20) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self.max_iterations = max_iterations

    # ------------------------------------------------------------------
    # Template methods (override in subclass)
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _build_inner_pipeline(self, **kwargs: Any) -> Pipeline:
        """Return the Pipeline to execute once per iteration."""

    @abc.abstractmethod
    async def _build_initial_context(self, **kwargs: Any) -> StepContext:
        """Return the StepContext for the first iteration."""

    @abc.abstractmethod
    def _is_done(self, ctx: StepContext) -> bool:
        """Return True when the loop should stop."""

    @abc.abstractmethod
    def _extract_result(self, ctx: StepContext) -> Any:
        """Pull the final result from the terminal context."""

    @abc.abstractmethod
    async def _accumulate(self, ctx: StepContext) -> StepContext:
        """Build the next iteration's context from the current one."""

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _on_step_error(self, ctx: StepContext, error: Exception) -> StepContext:
        """Called when the inner pipeline raises.  Default re-raises."""
        raise error

    async def _after_iteration(self, ctx: StepContext) -> None:
        """Called once per pass, after the pipeline (or error hook) ran."""

    def _on_timeout(self, last_ctx: StepContext, iteration: int) -> Any:
        """Called when *max_iterations* is reached without termination.

        Default raises ``RuntimeError``.  Override to return a fallback.
        """
        raise RuntimeError(
            f"SubRunner hit max_iterations ({self.max_iterations}) "
            f"without terminating"
        )

    # ------------------------------------------------------------------
    # Loop driver
    # ------------------------------------------------------------------

    async def run_loop(self, **kwargs: Any) -> Any:
        """Execute the iterative loop.

        Builds the inner pipeline once, then loops:
        context → pipeline → check → accumulate → repeat.
        """
        pipe = self._build_inner_pipeline(**kwargs)
        ctx = await self._build_initial_context(**kwargs)

        for i in range(self.max_iterations):
            try:
                ctx = await pipe(ctx)
            except Exception as exc:
                ctx = self._on_step_error(ctx, exc)
            await self._after_iteration(ctx)
            if self._is_done(ctx):
                return self._extract_result(ctx)
            if i + 1 < self.max_iterations:
                ctx = await self._accumulate(ctx)

        return self._on_timeout(ctx, self.max_iterations)
