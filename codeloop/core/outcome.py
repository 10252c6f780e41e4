"""Tagged results returned across the tool and sandbox boundaries.

Inside a running snippet, signals have to unwind the generated code, so
they travel as exceptions.  Everywhere else they are returned as one of the
variants below, and callers dispatch on the variant explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from .errors import AbortedSignal, ThinkSignal, VMInterruptSignal, VMSignal


@dataclass(frozen=True)
class Ok:
    value: Any = None


@dataclass(frozen=True)
class Think:
    variables: Any = field(default_factory=dict)
    reason: str = "Thinking requested"
    signal: ThinkSignal | None = None


@dataclass(frozen=True)
class Interrupt:
    signal: VMInterruptSignal


@dataclass(frozen=True)
class Aborted:
    reason: str = "The operation was aborted"


@dataclass(frozen=True)
class Failure:
    error: BaseException


Outcome = Union[Ok, Think, Interrupt, Aborted, Failure]


def from_signal(signal: VMSignal) -> Outcome:
    """Map a raised signal to its tagged variant."""
    if isinstance(signal, ThinkSignal):
        return Think(variables=signal.variables, reason=signal.reason, signal=signal)
    if isinstance(signal, VMInterruptSignal):
        return Interrupt(signal=signal)
    if isinstance(signal, AbortedSignal):
        return Aborted(reason=signal.reason)
    return Failure(error=signal)


def to_signal(outcome: Outcome) -> VMSignal | None:
    """Inverse of :func:`from_signal` for variants that carry a signal."""
    if isinstance(outcome, Think):
        return outcome.signal or ThinkSignal(outcome.reason, outcome.variables)
    if isinstance(outcome, Interrupt):
        return outcome.signal
    if isinstance(outcome, Aborted):
        return AbortedSignal(outcome.reason)
    return None
