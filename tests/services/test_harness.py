"""Tests for ConcurrencyHarness, Rendezvous and crisscross operations."""

from __future__ import annotations

import threading
from decimal import Decimal

import pytest

from txnlab.domain.outcome import Committed, FailureKind, Fatal, FinalResult, Retryable
from txnlab.domain.types import TransferRequest
from txnlab.infrastructure.ledger import Ledger
from txnlab.services.harness import ActorReport, ConcurrencyHarness, Rendezvous, crisscross
from txnlab.services.transfer import TransferExecutor

DONE = Committed()
DEADLOCK = Retryable(kind=FailureKind.DEADLOCK_DETECTED, reason="cycle")


class TestActorReport:
    def test_records_outcomes(self) -> None:
        report = ActorReport(actor=0)
        report.record(FinalResult(outcome=DONE, history=(DEADLOCK, DONE)))
        fatal = Fatal(kind=FailureKind.INSUFFICIENT_FUNDS, reason="broke")
        report.record(FinalResult(outcome=fatal, history=(fatal,)))
        assert report.operations == 2
        assert report.attempts == 3
        assert report.committed == 1
        assert report.to_dict() == {
            "actor": 0,
            "operations": 2,
            "attempts": 3,
            "committed": 1,
            "fatal": {"insufficient_funds": 1},
            "retries": {"deadlock_detected": 1},
        }


class TestConcurrencyHarness:
    def test_runs_every_actor_and_iteration(self, ledger: Ledger) -> None:
        calls: list[tuple[int, int]] = []
        guard = threading.Lock()
        done: list[int] = []

        def operation(actor: int, iteration: int) -> FinalResult:
            with guard:
                calls.append((actor, iteration))
            return FinalResult(outcome=DONE, history=(DONE,))

        report = ConcurrencyHarness(ledger).run(
            3, operation, iterations=4, on_actor_done=done.append
        )
        assert sorted(calls) == [(a, i) for a in range(3) for i in range(4)]
        assert sorted(done) == [0, 1, 2]
        assert report.committed == 12
        assert report.attempts == 12
        assert report.total == Decimal("2000")
        assert report.elapsed_ms >= 0

    def test_lockstep_keeps_actors_within_one_iteration(self, ledger: Ledger) -> None:
        progress = [0, 0]
        guard = threading.Lock()
        max_gap = 0

        def operation(actor: int, _iteration: int) -> FinalResult:
            nonlocal max_gap
            with guard:
                progress[actor] += 1
                max_gap = max(max_gap, abs(progress[0] - progress[1]))
            return FinalResult(outcome=DONE, history=(DONE,))

        ConcurrencyHarness(ledger).run(2, operation, iterations=200, lockstep=True)
        assert max_gap <= 1

    def test_operation_errors_propagate(self, ledger: Ledger) -> None:
        def operation(actor: int, _iteration: int) -> FinalResult:
            raise RuntimeError(f"actor {actor} broke")

        with pytest.raises(RuntimeError, match="broke"):
            ConcurrencyHarness(ledger).run(1, operation)

    def test_lockstep_failure_keeps_original_error(self, ledger: Ledger) -> None:
        def operation(actor: int, iteration: int) -> FinalResult:
            if actor == 1 and iteration == 3:
                raise RuntimeError("actor 1 failed")
            return FinalResult(outcome=DONE, history=(DONE,))

        with pytest.raises(RuntimeError, match="actor 1 failed"):
            ConcurrencyHarness(ledger).run(2, operation, iterations=10, lockstep=True)

    @pytest.mark.parametrize(("actors", "iterations"), [(0, 1), (1, -1)])
    def test_rejects_bad_arguments(self, ledger: Ledger, actors: int, iterations: int) -> None:
        with pytest.raises(ValueError):
            ConcurrencyHarness(ledger).run(
                actors,
                lambda _a, _i: FinalResult(outcome=DONE, history=(DONE,)),
                iterations=iterations,
            )


class TestRendezvous:
    def test_parties_meet(self) -> None:
        rendezvous = Rendezvous(2, timeout=5)
        request = TransferRequest("A", "B", Decimal("1"))
        threads = [threading.Thread(target=rendezvous, args=(request,)) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert rendezvous.met == 1
        assert rendezvous.missed == 0

    def test_timeout_resets_for_next_round(self) -> None:
        rendezvous = Rendezvous(2, timeout=0.01)
        rendezvous(TransferRequest("A", "B", Decimal("1")))
        assert rendezvous.missed == 1
        assert not rendezvous.closed

    def test_retries_and_closed_pass_through(self) -> None:
        rendezvous = Rendezvous(2, timeout=5)
        rendezvous(TransferRequest("A", "B", Decimal("1"), attempt=2))
        rendezvous.close()
        rendezvous(TransferRequest("A", "B", Decimal("1")))
        assert rendezvous.closed
        assert rendezvous.met == 0
        assert rendezvous.missed == 0


class TestCrisscross:
    def test_alternates_direction_by_actor(self, ledger: Ledger) -> None:
        executors = [TransferExecutor(ledger) for _ in range(2)]
        operation = crisscross(executors, ["A", "B"], "100")
        assert operation(0, 0).ok
        assert ledger.balances() == {"A": Decimal("900"), "B": Decimal("1100")}
        assert operation(1, 0).ok
        assert ledger.balances() == {"A": Decimal("1000"), "B": Decimal("1000")}

    def test_needs_two_accounts(self, ledger: Ledger) -> None:
        with pytest.raises(ValueError):
            crisscross([TransferExecutor(ledger)], ["A"], 1)
