"""Immutable per-pass context for the execution loop's inner pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from pipeline.context import StepContext

from ..core.context import Iteration


@dataclass(frozen=True)
class LoopIterationContext(StepContext):
    """Frozen context flowing through the six inner loop steps.

    Every pass starts from a fresh ``LoopIterationContext`` holding the
    conversation so far and the :class:`Iteration` being filled in.  Inner
    steps populate the remaining fields via ``.replace()``.  The
    ``Iteration`` itself is the mutable record that outlives the pass.
    """

    # Input for this pass
    current: Optional[Iteration] = None
    history: tuple[dict[str, str], ...] = ()

    # PromptStep output
    messages: tuple[dict[str, str], ...] = ()

    # GenerateStep output
    llm_output: Optional[str] = None

    # ParseCodeStep output
    code: Optional[str] = None
    assistant_message: Optional[str] = None

    # ScopeStep output
    scope: Any = None

    # SandboxStep output
    sandbox_result: Any = None  # SandboxResult, None when the run was skipped
    sandbox_started_at: Optional[float] = None

    # InterpretStep output: terminal status of ``current``
    status: Any = None
