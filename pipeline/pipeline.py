"""Pipeline — composable, sequential, async step runner."""

from __future__ import annotations

import inspect
import logging

from .context import StepContext
from .errors import PipelineOrderError

logger = logging.getLogger(__name__)


class Pipeline:
    """Ordered sequence of steps.  Satisfies StepProtocol — can be nested.

    Build via the constructor or the fluent API::

        pipe = (
            Pipeline()
            .then(PromptStep(...))
            .then(GenerateStep(...))
            .then(SandboxStep(...))
        )
        ctx = await pipe(ctx)

    Steps may be sync or async; async results are awaited in place, so the
    pipeline only suspends where a step does.

    ``requires`` and ``provides`` are inferred from the step chain and kept
    up-to-date as steps are added.
    """

    def __init__(self, steps: list | None = None) -> None:
        self._steps: list = list(steps or [])
        self._validate_steps(self._steps)
        self.requires, self.provides = self._infer_contracts(self._steps)

    @property
    def steps(self) -> tuple:
        return tuple(self._steps)

    # ------------------------------------------------------------------
    # Contract inference
    # ------------------------------------------------------------------

    @staticmethod
    def _infer_contracts(steps: list) -> tuple[frozenset, frozenset]:
        """Compute (requires, provides) for the full step chain.

        ``requires`` — fields the pipeline needs from the outside.
        ``provides`` — union of everything any inner step writes.
        """
        provided_so_far: set[str] = set()
        external_requires: set[str] = set()
        for step in steps:
            step_requires = set(getattr(step, "requires", frozenset()))
            step_provides = set(getattr(step, "provides", frozenset()))
            external_requires |= step_requires - provided_so_far
            provided_so_far |= step_provides
        return frozenset(external_requires), frozenset(provided_so_far)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_steps(steps: list) -> None:
        """Raise PipelineOrderError when a step reads a field too early.

        If step B requires field X, and X is produced by some step in the
        pipeline that appears *after* B, the wiring is wrong.  Fields no
        step produces are treated as external inputs.
        """
        all_provided_internally: set[str] = set()
        for step in steps:
            all_provided_internally |= set(getattr(step, "provides", frozenset()))

        provided_so_far: set[str] = set()
        for step in steps:
            step_requires = set(getattr(step, "requires", frozenset()))
            out_of_order = (step_requires & all_provided_internally) - provided_so_far
            if out_of_order:
                raise PipelineOrderError(
                    f"{type(step).__name__} requires {out_of_order!r} but these "
                    f"are produced by a later step — check step ordering."
                )
            provided_so_far |= set(getattr(step, "provides", frozenset()))

    # ------------------------------------------------------------------
    # Fluent builder
    # ------------------------------------------------------------------

    def then(self, step: object) -> "Pipeline":
        """Append *step* and return ``self`` for chaining."""
        new_steps = self._steps + [step]
        # Validate before mutating so errors are raised immediately
        self._validate_steps(new_steps)
        self._steps = new_steps
        self.requires, self.provides = self._infer_contracts(self._steps)
        return self

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def __call__(self, ctx: StepContext) -> StepContext:
        """Run all steps sequentially, awaiting async ones."""
        for step in self._steps:
            logger.debug("Running step %s", type(step).__name__)
            result = step(ctx)
            if inspect.isawaitable(result):
                result = await result
            ctx = result
        return ctx
