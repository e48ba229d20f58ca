"""Tests for InMemoryStore: row locks, blocking, deadlocks and snapshots."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from decimal import Decimal

import pytest

from txnlab.domain.errors import AccountNotFound, DeadlockDetected, SerializationFailure
from txnlab.domain.types import IsolationLevel
from txnlab.infrastructure.memory import InMemoryStore

RC = IsolationLevel.READ_COMMITTED
RR = IsolationLevel.REPEATABLE_READ
SER = IsolationLevel.SERIALIZABLE


def _wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("condition not reached in time")
        time.sleep(0.001)


class TestLocks:
    def test_lock_returns_committed_balance(self, memory_store: InMemoryStore) -> None:
        txn = memory_store.begin_transaction(RC)
        assert memory_store.lock_row_for_update(txn, "A") == Decimal("1000")
        assert memory_store.lock_holder("A") == txn.txn_id
        memory_store.rollback(txn)
        assert memory_store.lock_holder("A") is None

    def test_relock_by_holder_is_free(self, memory_store: InMemoryStore) -> None:
        txn = memory_store.begin_transaction(RC)
        memory_store.lock_row_for_update(txn, "A")
        memory_store.lock_row_for_update(txn, "A")
        assert txn.locks == ["A"]
        memory_store.rollback(txn)

    def test_missing_row(self, memory_store: InMemoryStore) -> None:
        txn = memory_store.begin_transaction(RC)
        with pytest.raises(AccountNotFound):
            memory_store.lock_row_for_update(txn, "Z")
        memory_store.rollback(txn)

    def test_second_locker_blocks_until_commit(self, memory_store: InMemoryStore) -> None:
        first = memory_store.begin_transaction(RC)
        memory_store.lock_row_for_update(first, "A")
        memory_store.write_row(first, "A", Decimal("900"))

        seen: list[Decimal] = []
        second = memory_store.begin_transaction(RC)
        worker = threading.Thread(
            target=lambda: seen.append(memory_store.lock_row_for_update(second, "A"))
        )
        worker.start()
        _wait_until(lambda: memory_store.waiting_transactions() == 1)
        assert seen == []

        memory_store.commit(first)
        worker.join(timeout=5)
        assert seen == [Decimal("900")]
        assert memory_store.lock_holder("A") == second.txn_id
        memory_store.rollback(second)

    def test_inactive_transaction_rejected(self, memory_store: InMemoryStore) -> None:
        txn = memory_store.begin_transaction(RC)
        memory_store.commit(txn)
        with pytest.raises(RuntimeError, match="no longer active"):
            memory_store.lock_row_for_update(txn, "A")
        memory_store.rollback(txn)  # idempotent


class TestDeadlock:
    def test_crossing_locks_abort_the_closing_waiter(self, memory_store: InMemoryStore) -> None:
        t1 = memory_store.begin_transaction(RC)
        t2 = memory_store.begin_transaction(RC)
        memory_store.lock_row_for_update(t1, "A")
        memory_store.lock_row_for_update(t2, "B")

        got: list[Decimal] = []
        worker = threading.Thread(
            target=lambda: got.append(memory_store.lock_row_for_update(t2, "A"))
        )
        worker.start()
        _wait_until(lambda: memory_store.waiting_transactions() == 1)

        with pytest.raises(DeadlockDetected, match="deadlock detected"):
            memory_store.lock_row_for_update(t1, "B")
        memory_store.rollback(t1)

        worker.join(timeout=5)
        assert got == [Decimal("1000")]
        memory_store.commit(t2)
        assert memory_store.waiting_transactions() == 0


class TestIsolation:
    def test_read_committed_sees_new_commits(self, memory_store: InMemoryStore) -> None:
        reader = memory_store.begin_transaction(RC)
        assert memory_store.read_row(reader, "A") == Decimal("1000")
        writer = memory_store.begin_transaction(RC)
        memory_store.write_row(writer, "A", Decimal("1050"))
        memory_store.commit(writer)
        assert memory_store.read_row(reader, "A") == Decimal("1050")
        memory_store.write_row(reader, "A", Decimal("1150"))
        memory_store.commit(reader)
        assert memory_store.get_account("A").balance == Decimal("1150")

    @pytest.mark.parametrize("level", [RR, SER])
    def test_snapshot_levels_read_snapshot_and_fail_on_write(
        self, memory_store: InMemoryStore, level: IsolationLevel
    ) -> None:
        reader = memory_store.begin_transaction(level)
        assert memory_store.read_row(reader, "A") == Decimal("1000")
        writer = memory_store.begin_transaction(RC)
        memory_store.write_row(writer, "A", Decimal("1050"))
        memory_store.commit(writer)

        assert memory_store.read_row(reader, "A") == Decimal("1000")
        with pytest.raises(SerializationFailure):
            memory_store.write_row(reader, "A", Decimal("1100"))
        memory_store.rollback(reader)
        assert memory_store.get_account("A").balance == Decimal("1050")

    def test_serializable_validates_read_set_at_commit(
        self, memory_store: InMemoryStore
    ) -> None:
        txn = memory_store.begin_transaction(SER)
        memory_store.read_row(txn, "A")
        other = memory_store.begin_transaction(RC)
        memory_store.write_row(other, "A", Decimal("1"))
        memory_store.commit(other)

        memory_store.write_row(txn, "B", Decimal("2000"))
        with pytest.raises(SerializationFailure, match="rows A"):
            memory_store.commit(txn)
        assert not txn.active
        assert memory_store.get_account("B").balance == Decimal("1000")

    def test_repeatable_read_allows_write_skew(self, memory_store: InMemoryStore) -> None:
        txn = memory_store.begin_transaction(RR)
        memory_store.read_row(txn, "A")
        other = memory_store.begin_transaction(RC)
        memory_store.write_row(other, "A", Decimal("1"))
        memory_store.commit(other)
        memory_store.write_row(txn, "B", Decimal("2000"))
        memory_store.commit(txn)
        assert memory_store.get_account("B").balance == Decimal("2000")

    def test_rows_created_after_snapshot_are_invisible(
        self, memory_store: InMemoryStore
    ) -> None:
        txn = memory_store.begin_transaction(RR)
        memory_store.create_account("C", Decimal("5"))
        with pytest.raises(AccountNotFound):
            memory_store.read_row(txn, "C")
        memory_store.rollback(txn)

    @pytest.mark.parametrize("level", [RR, SER])
    def test_snapshot_is_taken_at_begin(
        self, memory_store: InMemoryStore, level: IsolationLevel
    ) -> None:
        txn = memory_store.begin_transaction(level)
        writer = memory_store.begin_transaction(RC)
        memory_store.write_row(writer, "A", Decimal("1050"))
        memory_store.commit(writer)
        assert memory_store.read_row(txn, "A") == Decimal("1000")
        memory_store.rollback(txn)


class TestAdministration:
    def test_create_duplicate(self, memory_store: InMemoryStore) -> None:
        with pytest.raises(ValueError, match="already exists"):
            memory_store.create_account("A", Decimal("1"))

    def test_list_sorted(self, memory_store: InMemoryStore) -> None:
        memory_store.create_account("0", Decimal("0"), owner_name="Zero")
        ids = [a.id for a in memory_store.list_accounts()]
        assert ids == ["0", "A", "B"]
        assert memory_store.get_account("0").owner_name == "Zero"

    def test_set_balances_bumps_version(self) -> None:
        store = InMemoryStore()
        store.set_balances({"A": Decimal("10")})
        assert store.get_account("A").version == 0
        store.set_balances({"A": Decimal("20")})
        account = store.get_account("A")
        assert account.balance == Decimal("20")
        assert account.version == 1
