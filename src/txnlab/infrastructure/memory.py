"""InMemoryStore: an in-process transactional store with real row locks.

Rows live in a dict. Exclusive row locks, blocking waits and deadlock
detection follow the semantics of a relational store:

- **Locks**: one holder per row, held until commit or rollback. A
  transaction blocks (on a condition variable) until the row is free.
- **Deadlocks**: every wait is recorded in a :class:`WaitForGraph`. The
  transaction whose wait would close a cycle is chosen as the victim and
  gets :class:`DeadlockDetected`; it must roll back to free its locks.
- **Isolation**: ``READ_COMMITTED`` reads the latest committed value.
  ``REPEATABLE_READ`` and ``SERIALIZABLE`` read from a snapshot taken at
  begin. PostgreSQL takes its snapshot at the first statement instead, so
  a commit landing between ``BEGIN`` and that statement is visible there
  but not here. Locking or writing a row that changed since the snapshot
  raises :class:`SerializationFailure`. ``SERIALIZABLE`` additionally
  re-validates its read set at commit when the transaction wrote anything.

The internal latch only guards lock-table bookkeeping. It is released
while a transaction waits and is never held while callers run business
logic, so transfers on disjoint rows proceed in parallel.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from txnlab.domain.errors import AccountNotFound, DeadlockDetected, SerializationFailure
from txnlab.domain.types import Account, IsolationLevel, to_amount
from txnlab.infrastructure.graph.wait_for import WaitForGraph

if TYPE_CHECKING:
    from collections.abc import Mapping
    from decimal import Decimal

logger = logging.getLogger(__name__)


@dataclass
class _Row:
    balance: Decimal
    version: int = 0
    owner_name: str | None = None
    holder: int | None = None


@dataclass
class MemoryTxn:
    """Transaction handle issued by :class:`InMemoryStore`."""

    txn_id: int
    isolation: IsolationLevel
    snapshot: dict[str, tuple[Decimal, int]] = field(default_factory=dict, repr=False)
    read_versions: dict[str, int] = field(default_factory=dict, repr=False)
    writes: dict[str, Decimal] = field(default_factory=dict, repr=False)
    locks: list[str] = field(default_factory=list)
    _active: bool = field(default=True, repr=False)

    @property
    def active(self) -> bool:
        return self._active


class InMemoryStore:
    """Dict-backed store implementing :class:`~txnlab.infrastructure.store.Store`."""

    def __init__(self) -> None:
        self._rows: dict[str, _Row] = {}
        self._latch = threading.Condition()
        self._waits = WaitForGraph()
        self._txn_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin_transaction(self, isolation: IsolationLevel) -> MemoryTxn:
        with self._latch:
            txn = MemoryTxn(txn_id=next(self._txn_ids), isolation=isolation)
            if isolation.uses_snapshot:
                txn.snapshot = {
                    row_id: (row.balance, row.version) for row_id, row in self._rows.items()
                }
        return txn

    def lock_row_for_update(self, txn: MemoryTxn, row_id: str) -> Decimal:
        with self._latch:
            row = self._lock(txn, row_id)
            txn.read_versions.setdefault(row_id, row.version)
            return txn.writes.get(row_id, row.balance)

    def read_row(self, txn: MemoryTxn, row_id: str) -> Decimal:
        with self._latch:
            _require_active(txn)
            row = self._require(row_id)
            if row_id in txn.writes:
                return txn.writes[row_id]
            if txn.isolation.uses_snapshot:
                if row_id not in txn.snapshot:
                    # Created after our snapshot: invisible to this transaction.
                    raise AccountNotFound(row_id)
                balance, version = txn.snapshot[row_id]
            else:
                balance, version = row.balance, row.version
            txn.read_versions.setdefault(row_id, version)
            return balance

    def write_row(self, txn: MemoryTxn, row_id: str, value: Decimal) -> None:
        with self._latch:
            row = self._lock(txn, row_id)
            txn.read_versions.setdefault(row_id, row.version)
            txn.writes[row_id] = to_amount(value)

    def commit(self, txn: MemoryTxn) -> None:
        with self._latch:
            _require_active(txn)
            if txn.isolation is IsolationLevel.SERIALIZABLE and txn.writes:
                stale = [
                    row_id
                    for row_id, version in txn.read_versions.items()
                    if self._rows[row_id].version != version
                ]
                if stale:
                    self._finish(txn)
                    msg = (
                        "could not serialize access due to read/write dependencies "
                        f"among transactions (rows {', '.join(sorted(stale))})"
                    )
                    raise SerializationFailure(msg)
            for row_id, value in txn.writes.items():
                row = self._rows[row_id]
                row.balance = value
                row.version += 1
            logger.debug("txn %d committed %d row(s)", txn.txn_id, len(txn.writes))
            self._finish(txn)

    def rollback(self, txn: MemoryTxn) -> None:
        with self._latch:
            if not txn.active:
                return
            logger.debug("txn %d rolled back", txn.txn_id)
            self._finish(txn)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def create_account(
        self, account_id: str, balance: Decimal, *, owner_name: str | None = None
    ) -> Account:
        with self._latch:
            if account_id in self._rows:
                msg = f"Account already exists: {account_id!r}"
                raise ValueError(msg)
            row = _Row(balance=to_amount(balance), owner_name=owner_name)
            self._rows[account_id] = row
            return _to_account(account_id, row)

    def get_account(self, account_id: str) -> Account:
        with self._latch:
            return _to_account(account_id, self._require(account_id))

    def list_accounts(self) -> list[Account]:
        with self._latch:
            return [_to_account(row_id, self._rows[row_id]) for row_id in sorted(self._rows)]

    def set_balances(self, balances: Mapping[str, Decimal]) -> None:
        """Overwrite committed balances, creating missing accounts.

        Meant for resets between runs; callers must not hold open
        transactions on the affected rows.
        """
        with self._latch:
            for row_id, balance in balances.items():
                row = self._rows.get(row_id)
                if row is None:
                    self._rows[row_id] = _Row(balance=to_amount(balance))
                else:
                    row.balance = to_amount(balance)
                    row.version += 1

    def close(self) -> None:
        """Nothing to release; present for protocol parity with SqlStore."""

    # --- Introspection (tests and diagnostics) ---

    def lock_holder(self, row_id: str) -> int | None:
        with self._latch:
            return self._require(row_id).holder

    def waiting_transactions(self) -> int:
        """Number of transactions currently blocked on a row lock."""
        with self._latch:
            return len(self._waits)

    # ------------------------------------------------------------------
    # Internals (call with the latch held)
    # ------------------------------------------------------------------

    def _require(self, row_id: str) -> _Row:
        row = self._rows.get(row_id)
        if row is None:
            raise AccountNotFound(row_id)
        return row

    def _lock(self, txn: MemoryTxn, row_id: str) -> _Row:
        _require_active(txn)
        row = self._require(row_id)
        if row.holder != txn.txn_id:
            while row.holder is not None:
                holder = row.holder
                cycle = self._waits.wait(txn.txn_id, holder)
                if cycle is not None:
                    logger.debug("deadlock: txn %d closes cycle %s", txn.txn_id, cycle)
                    chain = " -> ".join(str(t) for t in [*cycle, cycle[0]])
                    msg = (
                        f"deadlock detected: transaction {txn.txn_id} waits for "
                        f"{holder} on row {row_id!r} (cycle {chain})"
                    )
                    raise DeadlockDetected(msg)
                self._latch.wait()
            self._waits.release(txn.txn_id)
            row.holder = txn.txn_id
            txn.locks.append(row_id)

        if txn.isolation.uses_snapshot:
            snap = txn.snapshot.get(row_id)
            if snap is None or snap[1] != row.version:
                msg = f"could not serialize access due to concurrent update of {row_id!r}"
                raise SerializationFailure(msg)
        return row

    def _finish(self, txn: MemoryTxn) -> None:
        for row_id in txn.locks:
            row = self._rows.get(row_id)
            if row is not None and row.holder == txn.txn_id:
                row.holder = None
        txn.locks.clear()
        txn.writes.clear()
        txn._active = False
        self._waits.forget(txn.txn_id)
        self._latch.notify_all()


def _require_active(txn: MemoryTxn) -> None:
    if not txn.active:
        msg = f"Transaction {txn.txn_id} is no longer active"
        raise RuntimeError(msg)


def _to_account(row_id: str, row: _Row) -> Account:
    return Account(id=row_id, balance=row.balance, version=row.version, owner_name=row.owner_name)
