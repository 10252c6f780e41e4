"""Configuration for an execution run."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_CONTEXT_WINDOW = 128_000


@dataclass
class LoopOptions:
    """Options recognised by :func:`codeloop.execute`.

    Attributes:
        loop: Maximum number of iterations (LLM call + code run) per execution.
        temperature: Sampling temperature forwarded to the generator.
        model: Model selector forwarded to the generator; ``None`` lets the
            generator use its own default.
        context_window: Total token window of the model.  The output reserve
            is subtracted from it before the input messages are truncated.
        timeout: Optional wall-clock limit, in seconds, for one code run.
        slow_tool_warning: Seconds before a running tool gets a ``tool_slow``
            trace.
    """

    loop: int = 3
    temperature: float = 0.7
    model: Optional[str] = None
    context_window: int = DEFAULT_CONTEXT_WINDOW
    timeout: Optional[float] = None
    slow_tool_warning: float = 15.0

    def __post_init__(self) -> None:
        if self.loop < 1:
            raise ValueError(f"loop must be >= 1, got {self.loop}")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError(f"temperature must be within [0, 2], got {self.temperature}")
        if self.context_window <= 0:
            raise ValueError("context_window must be positive")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")

    @classmethod
    def from_env(cls, **overrides: object) -> "LoopOptions":
        """Build options from ``CODELOOP_*`` environment variables.

        Explicit *overrides* win over the environment.
        """
        values: dict[str, object] = {}
        if os.getenv("CODELOOP_LOOP"):
            values["loop"] = int(os.environ["CODELOOP_LOOP"])
        if os.getenv("CODELOOP_TEMPERATURE"):
            values["temperature"] = float(os.environ["CODELOOP_TEMPERATURE"])
        if os.getenv("CODELOOP_MODEL"):
            values["model"] = os.environ["CODELOOP_MODEL"]
        if os.getenv("CODELOOP_CONTEXT_WINDOW"):
            values["context_window"] = int(os.environ["CODELOOP_CONTEXT_WINDOW"])
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]
