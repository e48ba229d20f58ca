"""Attempt outcomes and the final result of a retried operation.

A single attempt produces exactly one :data:`Outcome`:

- :class:`Committed`: terminal success.
- :class:`Retryable`: transient conflict; the retry driver may try again.
- :class:`Fatal`: terminal failure; never retried.

The retry driver folds the attempt history into a :class:`FinalResult`
whose outcome is always terminal.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any


class FailureKind(StrEnum):
    """Every reason an attempt can fail, retryable or not."""

    DEADLOCK_DETECTED = "deadlock_detected"
    SERIALIZATION_FAILURE = "serialization_failure"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    ACCOUNT_NOT_FOUND = "account_not_found"
    CONNECTION_ERROR = "connection_error"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class Committed:
    new_balances: dict[str, Decimal] = field(default_factory=dict)
    value: Any = None


@dataclass(frozen=True)
class Retryable:
    kind: FailureKind
    reason: str


@dataclass(frozen=True)
class Fatal:
    """Terminal failure.

    ``last_retryable`` is set only for ``MAX_RETRIES_EXCEEDED`` and holds
    the conflict that was still occurring when the budget ran out.
    """

    kind: FailureKind
    reason: str
    last_retryable: Retryable | None = None


type Outcome = Committed | Retryable | Fatal


@dataclass(frozen=True)
class FinalResult:
    """Terminal outcome plus every attempt that led to it."""

    outcome: Committed | Fatal
    history: tuple[Outcome, ...]

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, Committed)

    @property
    def attempts(self) -> int:
        return len(self.history)

    @property
    def retries(self) -> list[Retryable]:
        return [o for o in self.history if isinstance(o, Retryable)]

    def retry_counts(self) -> Counter[str]:
        """Count retryable conflicts by kind."""
        return Counter(str(r.kind) for r in self.retries)

    @property
    def fatal_kind(self) -> FailureKind | None:
        if isinstance(self.outcome, Fatal):
            return self.outcome.kind
        return None
