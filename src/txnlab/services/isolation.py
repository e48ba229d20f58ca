"""IsolationRunner: run an arbitrary read/write body at a chosen isolation level.

The body receives a :class:`TxnScope` and may read, lock and write rows
in any order. The runner commits after the body returns. Anything the
body or the commit raises is classified exactly as for transfers, and
the whole attempt is retried under the same :class:`RetryPolicy`:

- ``READ_COMMITTED``: every read sees the latest committed value;
  concurrent commits are never reported as conflicts.
- ``REPEATABLE_READ`` / ``SERIALIZABLE``: reads come from a snapshot;
  writing a row someone else changed since the snapshot raises a
  serialization failure, which is retried with a fresh snapshot.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog

from txnlab.domain.classifier import classify
from txnlab.domain.outcome import Committed, FinalResult, Outcome
from txnlab.domain.types import IsolationLevel, to_amount
from txnlab.services.base import BaseService
from txnlab.services.retry import RetryPolicy

if TYPE_CHECKING:
    from txnlab.infrastructure.ledger import Ledger, LedgerTransaction

log = structlog.get_logger(__name__)


@dataclass
class TxnScope:
    """What a transactional body may do during one attempt."""

    txn: LedgerTransaction
    attempt: int

    @property
    def isolation(self) -> IsolationLevel:
        return self.txn.isolation

    def read(self, account_id: str) -> Decimal:
        return self.txn.read(account_id)

    def read_for_update(self, account_id: str) -> Decimal:
        return self.txn.lock_and_read([account_id])[account_id]

    def write(self, account_id: str, balance: Decimal | int | str) -> None:
        self.txn.write(account_id, balance)

    def deposit(self, account_id: str, delta: Decimal | int | str) -> Decimal:
        """Lock, add *delta*, stage the write; returns the new balance."""
        balance = self.read_for_update(account_id) + to_amount(delta)
        self.write(account_id, balance)
        return balance


type TxnBody = Callable[[TxnScope], Any]


class IsolationRunner(BaseService):
    """Run transactional bodies with uniform retry semantics."""

    def __init__(self, ledger: Ledger, *, retry: RetryPolicy | None = None) -> None:
        super().__init__(ledger)
        self._retry = retry or RetryPolicy(max_attempts=1)

    def run(self, isolation: IsolationLevel, body: TxnBody) -> FinalResult:
        """Run *body* at *isolation*, retrying retryable conflicts.

        On success the outcome's ``value`` is whatever the body returned.
        """

        def attempt(n: int) -> Outcome:
            try:
                with self._ledger.transaction(isolation) as txn:
                    value = body(TxnScope(txn=txn, attempt=n))
                    new_balances = txn.commit()
            except Exception as exc:
                outcome = classify(exc)
                log.debug(
                    "isolation.aborted",
                    isolation=str(isolation),
                    attempt=n,
                    kind=str(outcome.kind),
                )
                return outcome
            return Committed(new_balances=new_balances, value=value)

        return self._retry.execute(attempt)


def concurrent_deposit(
    ledger: Ledger,
    account_id: str,
    delta: Decimal | int | str,
    *,
    isolation: IsolationLevel = IsolationLevel.READ_COMMITTED,
) -> Decimal:
    """Commit ``balance += delta`` from another thread and wait for it.

    Called from inside a body to simulate a concurrent writer. The caller
    must not hold a lock on *account_id*, or the two would wait on each
    other with no way for the store to notice.
    """
    result: dict[str, Decimal] = {}
    errors: list[BaseException] = []

    def run() -> None:
        try:
            with ledger.transaction(isolation) as txn:
                balance = txn.lock_and_read([account_id])[account_id] + to_amount(delta)
                result.update(txn.commit({account_id: balance}))
        except BaseException as exc:
            errors.append(exc)

    worker = threading.Thread(target=run, name=f"concurrent-deposit-{account_id}")
    worker.start()
    worker.join()
    if errors:
        raise errors[0]
    log.debug("isolation.concurrent_deposit", account_id=account_id, delta=str(delta))
    return result[account_id]
