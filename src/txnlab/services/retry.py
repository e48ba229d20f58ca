"""RetryPolicy: bounded attempts with randomized, attempt-scaled backoff.

The policy is the only place in txnlab that sleeps. It calls the body
with the attempt number (starting at 1) and reacts to the outcome:

- ``Committed`` -> return success.
- ``Fatal``     -> return immediately, no retry.
- ``Retryable`` -> sleep ``backoff(attempt)`` and try again, unless the
  attempt budget is spent, in which case the result is
  ``Fatal(MAX_RETRIES_EXCEEDED)`` carrying the last conflict.

Seeded policies are deterministic: the same seed yields the same delays.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from txnlab.domain.classifier import classify
from txnlab.domain.errors import LedgerError
from txnlab.domain.outcome import Committed, FailureKind, Fatal, FinalResult, Outcome, Retryable

if TYPE_CHECKING:
    from txnlab.config.models import RetryConfig

log = structlog.get_logger(__name__)

type BackoffFn = Callable[[int], float]


def uniform_backoff(base: float, rng: random.Random | None = None) -> BackoffFn:
    """Delay drawn uniformly from ``[0, base * attempt)`` seconds."""
    if base < 0:
        msg = f"Backoff base must be non-negative, got {base}"
        raise ValueError(msg)
    source = rng or random.Random()

    def backoff(attempt: int) -> float:
        return source.random() * base * attempt

    return backoff


def no_backoff(_attempt: int) -> float:
    return 0.0


@dataclass
class RetryPolicy:
    """Drive an attempt function until it commits, fails fatally, or runs out.

    Attributes:
        max_attempts: Upper bound on calls to the body (>= 1).
        backoff: Seconds to wait after failed attempt *n*.
        sleep: Injected for tests; defaults to :func:`time.sleep`.
    """

    max_attempts: int = 4
    backoff: BackoffFn = field(default=no_backoff)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {self.max_attempts}"
            raise ValueError(msg)

    @classmethod
    def from_config(cls, config: RetryConfig, *, seed_offset: int = 0) -> RetryPolicy:
        """Build a policy from ``[retry]`` settings.

        Each concurrent actor should get its own policy (and RNG); pass the
        actor index as *seed_offset* to keep seeded runs reproducible.
        """
        rng = random.Random(None if config.seed is None else config.seed + seed_offset)
        return cls(
            max_attempts=config.max_attempts,
            backoff=uniform_backoff(config.base_delay, rng),
        )

    def execute(self, body: Callable[[int], Outcome]) -> FinalResult:
        """Run *body* under this policy and return its terminal result.

        A ledger error escaping *body* is classified as if the body had
        returned the corresponding outcome.
        """
        history: list[Outcome] = []
        for attempt in range(1, self.max_attempts + 1):
            try:
                outcome = body(attempt)
            except LedgerError as exc:
                outcome = classify(exc)
            history.append(outcome)

            if isinstance(outcome, (Committed, Fatal)):
                return FinalResult(outcome=outcome, history=tuple(history))

            if attempt == self.max_attempts:
                break
            delay = self.backoff(attempt)
            log.debug(
                "retry.scheduled",
                attempt=attempt,
                max_attempts=self.max_attempts,
                kind=str(outcome.kind),
                delay_ms=round(delay * 1000, 2),
            )
            self.sleep(delay)

        last = history[-1]
        assert isinstance(last, Retryable)
        log.warning(
            "retry.exhausted",
            attempts=len(history),
            kind=str(last.kind),
            reason=last.reason,
        )
        return FinalResult(
            outcome=Fatal(
                kind=FailureKind.MAX_RETRIES_EXCEEDED,
                reason=f"gave up after {len(history)} attempt(s): {last.reason}",
                last_retryable=last,
            ),
            history=tuple(history),
        )
