"""Generic async pipeline engine: compose steps, drive them in a loop.

Public surface::

    from pipeline import (
        Pipeline,
        StepProtocol,
        StepContext,
        SubRunner,
        PipelineOrderError,
    )
"""

from .context import StepContext
from .errors import PipelineOrderError
from .pipeline import Pipeline
from .protocol import StepProtocol
from .sub_runner import SubRunner

__all__ = [
    "Pipeline",
    "StepProtocol",
    "StepContext",
    "SubRunner",
    "PipelineOrderError",
]
