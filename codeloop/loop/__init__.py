"""Execution loop as a SubRunner over an inner step pipeline.

Public API::

    from codeloop.loop import execute

    result = await execute(generator=generator, instructions="...")
"""

from .context import LoopIterationContext
from .runner import ExecutionLoop, ExecutionResult, TraceEvent, execute, execute_sync
from .steps import (
    GenerateStep,
    InterpretStep,
    ParseCodeStep,
    PromptStep,
    SandboxStep,
    ScopeStep,
)

__all__ = [
    "ExecutionLoop",
    "ExecutionResult",
    "LoopIterationContext",
    "TraceEvent",
    "execute",
    "execute_sync",
    "GenerateStep",
    "InterpretStep",
    "ParseCodeStep",
    "PromptStep",
    "SandboxStep",
    "ScopeStep",
]
