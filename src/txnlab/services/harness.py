"""ConcurrencyHarness: many actors hammering one shared ledger.

Each actor is a worker thread that calls its operation ``iterations``
times in a row; actors run truly concurrently against the same Ledger.
The harness joins every actor and reports, per actor, how many attempts
were made and how each operation ended.

:class:`Rendezvous` replaces the fixed ``sleep`` that lock-conflict demos
usually rely on: actors meet at a barrier right after taking their first
row lock, so under request-order locking every crossing pair really does
hold one lock each before asking for the other.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog

from txnlab.domain.outcome import FinalResult
from txnlab.domain.types import TransferRequest, to_money

if TYPE_CHECKING:
    from txnlab.infrastructure.ledger import Ledger
    from txnlab.services.transfer import TransferExecutor

log = structlog.get_logger(__name__)

type Operation = Callable[[int, int], FinalResult]


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@dataclass
class ActorReport:
    """What one actor did over its run."""

    actor: int
    operations: int = 0
    attempts: int = 0
    committed: int = 0
    fatal: Counter[str] = field(default_factory=Counter)
    retries: Counter[str] = field(default_factory=Counter)

    def record(self, result: FinalResult) -> None:
        self.operations += 1
        self.attempts += result.attempts
        self.retries.update(result.retry_counts())
        if result.ok:
            self.committed += 1
        else:
            self.fatal[str(result.fatal_kind)] += 1

    def to_dict(self) -> dict[str, object]:
        return {
            "actor": self.actor,
            "operations": self.operations,
            "attempts": self.attempts,
            "committed": self.committed,
            "fatal": dict(self.fatal),
            "retries": dict(self.retries),
        }


@dataclass
class HarnessReport:
    """Final ledger state plus every actor's report."""

    balances: dict[str, Decimal]
    actors: list[ActorReport]
    elapsed_ms: float = 0.0

    @property
    def total(self) -> Decimal:
        return sum(self.balances.values(), Decimal(0))

    @property
    def attempts(self) -> int:
        return sum(a.attempts for a in self.actors)

    @property
    def committed(self) -> int:
        return sum(a.committed for a in self.actors)

    @property
    def fatal(self) -> Counter[str]:
        total: Counter[str] = Counter()
        for actor in self.actors:
            total.update(actor.fatal)
        return total

    @property
    def retries(self) -> Counter[str]:
        total: Counter[str] = Counter()
        for actor in self.actors:
            total.update(actor.retries)
        return total


# ---------------------------------------------------------------------------
# Rendezvous
# ---------------------------------------------------------------------------


class Rendezvous:
    """Best-effort barrier for first attempts, usable as ``on_first_lock``.

    Retries skip the barrier, otherwise a retrying actor would wait for
    partners that already moved on. If the parties cannot all arrive
    within *timeout* (one of them is blocked on a row lock held by a
    waiter) everyone waiting is released and the barrier is reset for
    the next round. Once :meth:`close` is called (an actor ran out of
    work) every caller passes straight through.
    """

    def __init__(self, parties: int, *, timeout: float = 0.05) -> None:
        self._barrier = threading.Barrier(parties)
        self._timeout = timeout
        self._guard = threading.Lock()
        self._closed = False
        self.met = 0
        self.missed = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __call__(self, request: TransferRequest) -> None:
        if request.attempt != 1 or self._closed:
            return
        try:
            if self._barrier.wait(self._timeout) == 0:
                with self._guard:
                    self.met += 1
        except threading.BrokenBarrierError:
            with self._guard:
                if self._barrier.broken and not self._closed:
                    self.missed += 1
                    self._barrier.reset()
            log.debug("rendezvous.missed", from_id=request.from_id, to_id=request.to_id)

    def close(self, _actor: int | None = None) -> None:
        """Stop synchronizing and release anyone currently waiting."""
        with self._guard:
            self._closed = True
            self._barrier.abort()


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------


class ConcurrencyHarness:
    """Run concurrent actors against a shared ledger and collect a report."""

    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    def run(
        self,
        actor_count: int,
        operation: Operation,
        *,
        iterations: int = 1,
        lockstep: bool = False,
        on_actor_done: Callable[[int], None] | None = None,
    ) -> HarnessReport:
        """Run *operation* ``iterations`` times on each of *actor_count* threads.

        *operation* receives ``(actor_index, iteration)`` and returns the
        actor's FinalResult for that call. An exception escaping an
        operation is a bug, not an outcome: it propagates after all actors
        have been joined. When several actors fail, the first error that is
        not a broken lockstep barrier wins.

        With *lockstep* every actor waits for the others before starting
        its next iteration, so no actor runs more than one operation ahead.
        Actors hold no row locks while they wait.
        """
        if actor_count < 1:
            msg = f"actor_count must be at least 1, got {actor_count}"
            raise ValueError(msg)
        if iterations < 0:
            msg = f"iterations must be non-negative, got {iterations}"
            raise ValueError(msg)

        step = threading.Barrier(actor_count) if lockstep and actor_count > 1 else None

        def actor(index: int) -> ActorReport:
            report = ActorReport(actor=index)
            try:
                for iteration in range(iterations):
                    if step is not None:
                        step.wait()
                    report.record(operation(index, iteration))
            except BaseException:
                if step is not None:
                    step.abort()
                raise
            finally:
                if on_actor_done is not None:
                    on_actor_done(index)
            return report

        started = time.perf_counter()
        with ThreadPoolExecutor(max_workers=actor_count, thread_name_prefix="actor") as pool:
            futures = [pool.submit(actor, index) for index in range(actor_count)]
        errors = [exc for exc in (future.exception() for future in futures) if exc is not None]
        if errors:
            # Peers of a failed lockstep actor see the aborted barrier.
            raise next(
                (exc for exc in errors if not isinstance(exc, threading.BrokenBarrierError)),
                errors[0],
            )
        reports = [future.result() for future in futures]
        elapsed_ms = (time.perf_counter() - started) * 1000

        report = HarnessReport(
            balances=self._ledger.balances(), actors=reports, elapsed_ms=elapsed_ms
        )
        log.info(
            "harness.complete",
            actors=actor_count,
            iterations=iterations,
            lockstep=lockstep,
            attempts=report.attempts,
            committed=report.committed,
            retries=dict(report.retries),
            fatal=dict(report.fatal),
            elapsed_ms=round(elapsed_ms, 2),
        )
        return report


def crisscross(
    executors: Sequence[TransferExecutor],
    account_ids: Sequence[str],
    amount: Decimal | int | str,
) -> Operation:
    """Actor *i* transfers from account ``i mod n`` to account ``i+1 mod n``.

    With two accounts this is the classic pair of opposite transfers:
    actor 0 moves A -> B while actor 1 moves B -> A.
    """
    if len(account_ids) < 2:
        msg = "crisscross needs at least two accounts"
        raise ValueError(msg)
    value = to_money(amount)
    n = len(account_ids)

    def operation(actor: int, _iteration: int) -> FinalResult:
        source = account_ids[actor % n]
        target = account_ids[(actor + 1) % n]
        return executors[actor].transfer(source, target, value)

    return operation
