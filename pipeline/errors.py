"""Pipeline error types."""

from __future__ import annotations


class PipelineOrderError(Exception):
    """A step requires a field that no earlier step provides."""
