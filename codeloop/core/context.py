"""Context (one execution run) and Iteration (one attempt within it)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import LoopOptions
from .exit import DEFAULT_EXIT, LISTEN_EXIT, Exit, check_unique
from .getter import ValueOrGetter, as_getter
from .objects import ObjectInstance
from .status import ThinkingRequested, status_error
from .tool import Tool
from .traces import TraceLog, now_ms
from .transcript import TranscriptMessage

logger = logging.getLogger(__name__)

Mode = Literal["chat", "worker"]


class Mutation(BaseModel):
    """One committed write to an object property."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    object: str
    property: str
    before: Any = None
    after: Any = None


class LLMCallInfo(BaseModel):
    """Accounting for the model call of one iteration."""

    started_at: float
    ended_at: float
    status: Literal["success", "error"] = "success"
    tokens: int = Field(default=0, description="Input + output tokens")
    spend: float = Field(default=0.0, description="Input + output cost in USD")
    cached: bool = False
    output: str = ""
    model: str = ""


@dataclass(frozen=True)
class Catalogue:
    """The value-or-getter fields of a Context, resolved for one iteration."""

    instructions: str
    objects: tuple[ObjectInstance, ...]
    tools: tuple[Tool, ...]
    exits: tuple[Exit, ...]
    transcript: tuple[TranscriptMessage, ...]

    @property
    def mode(self) -> Mode:
        if any(t.name.lower() == "message" for t in self.tools):
            return "chat"
        return "worker"


class Iteration:
    """One attempt: prompt, generated code, sandbox outcome, terminal status.

    Everything except the trace log and the mutation log is frozen once
    :meth:`end` has been called.
    """

    def __init__(
        self,
        *,
        number: int,
        catalogue: Catalogue,
        variables: Optional[dict[str, Any]] = None,
    ) -> None:
        self.number = number
        self.catalogue = catalogue
        self.variables: dict[str, Any] = dict(variables or {})
        self.messages: list[dict[str, str]] = []
        self.code: Optional[str] = None
        self.llm: Optional[LLMCallInfo] = None
        self.traces = TraceLog()
        self.mutations: list[Mutation] = []
        self.started_at = now_ms()
        self.ended_at: Optional[float] = None
        self.status: Any = None

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "status", None) is not None:
            raise RuntimeError(
                f"Iteration {self.number} has ended; cannot set {name!r}"
            )
        super().__setattr__(name, value)

    # Convenience views over the resolved catalogue
    @property
    def objects(self) -> tuple[ObjectInstance, ...]:
        return self.catalogue.objects

    @property
    def tools(self) -> tuple[Tool, ...]:
        return self.catalogue.tools

    @property
    def exits(self) -> tuple[Exit, ...]:
        return self.catalogue.exits

    @property
    def is_ended(self) -> bool:
        return self.status is not None

    @property
    def error(self) -> Optional[str]:
        return status_error(self.status)

    @property
    def duration_ms(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return self.ended_at - self.started_at

    def track_mutation(self, mutation: Mutation) -> None:
        if self.is_ended:
            raise RuntimeError(f"Iteration {self.number} has ended; cannot track mutations")
        self.mutations.append(mutation)

    def end(self, status: Any) -> None:
        """Set the terminal status.  May only be called once."""
        if self.is_ended:
            raise RuntimeError(f"Iteration {self.number} already ended as {self.status.type}")
        self.ended_at = now_ms()
        self.traces.close()
        self.status = status
        logger.debug("Iteration %d ended: %s", self.number, status.type)

    def __repr__(self) -> str:
        status = self.status.type if self.status is not None else "running"
        return f"<Iteration {self.number} {status}>"


class Context:
    """Configuration and running history for one execution.

    The catalogue fields accept a static value or a ``fn(context)`` getter;
    getters are re-evaluated for every iteration.
    """

    def __init__(
        self,
        *,
        instructions: Any = None,
        objects: Any = None,
        tools: Any = None,
        exits: Any = None,
        transcript: Any = None,
        options: Optional[LoopOptions] = None,
    ) -> None:
        self.options = options or LoopOptions()
        self._instructions: ValueOrGetter = as_getter(instructions, "")
        self._objects: ValueOrGetter = as_getter(objects, [])
        self._tools: ValueOrGetter = as_getter(tools, [])
        self._exits: ValueOrGetter = as_getter(exits, [])
        self._transcript: ValueOrGetter = as_getter(transcript, [])
        self._iterations: list[Iteration] = []

    @property
    def loop(self) -> int:
        return self.options.loop

    @property
    def temperature(self) -> float:
        return self.options.temperature

    @property
    def model(self) -> Optional[str]:
        return self.options.model

    @property
    def iterations(self) -> list[Iteration]:
        return list(self._iterations)

    @property
    def last_iteration(self) -> Optional[Iteration]:
        return self._iterations[-1] if self._iterations else None

    def resolve(self) -> Catalogue:
        """Evaluate every value-or-getter field against the live context."""
        tools = tuple(self._tools.resolve(self) or ())
        objects = tuple(self._objects.resolve(self) or ())
        transcript = tuple(
            m if isinstance(m, TranscriptMessage) else TranscriptMessage.model_validate(m)
            for m in (self._transcript.resolve(self) or ())
        )
        exits = tuple(self._exits.resolve(self) or ())

        catalogue = Catalogue(
            instructions=self._instructions.resolve(self) or "",
            objects=objects,
            tools=tools,
            exits=exits,
            transcript=transcript,
        )
        if not exits:
            default = LISTEN_EXIT if catalogue.mode == "chat" else DEFAULT_EXIT
            catalogue = Catalogue(
                instructions=catalogue.instructions,
                objects=objects,
                tools=tools,
                exits=(default,),
                transcript=transcript,
            )
        check_unique(catalogue.exits)
        _check_unique_names(objects, tools)
        return catalogue

    def next_iteration(self) -> Iteration:
        """Create and append the next Iteration.

        Variables carry forward from the previous iteration; a think request
        with a mapping payload replaces them.
        """
        if len(self._iterations) >= self.loop:
            raise RuntimeError(f"Loop limit exceeded. Maximum allowed loops: {self.loop}")

        previous = self.last_iteration
        variables: dict[str, Any] = {}
        if previous is not None:
            variables = dict(previous.variables)
            status = previous.status
            if isinstance(status, ThinkingRequested) and isinstance(status.variables, dict):
                variables = dict(status.variables)

        iteration = Iteration(
            number=len(self._iterations) + 1,
            catalogue=self.resolve(),
            variables=variables,
        )
        self._iterations.append(iteration)
        return iteration


def _check_unique_names(objects: tuple[ObjectInstance, ...], tools: tuple[Tool, ...]) -> None:
    seen: set[str] = set()
    labels = [o.name for o in objects]
    for tool in tools:
        labels.extend([tool.name, *tool.aliases])
    for label in labels:
        if label in seen:
            raise ValueError(f"Duplicate object or tool name: {label!r}")
        seen.add(label)

