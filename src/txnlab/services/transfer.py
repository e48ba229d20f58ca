"""TransferExecutor: move funds between two accounts atomically.

One attempt walks the state machine::

    IDLE -> LOCK_ACQUIRED -> VALIDATED -> COMMITTED
    IDLE -> LOCK_ACQUIRED -> ABORTED        (conflict or business failure)
    IDLE -> ABORTED                         (first lock failed)

Both rows are locked before the debit is validated and both stay locked
until commit or rollback, so no partial transfer is ever visible.
Which row gets locked first is the executor's :class:`LockOrder`:
``ASCENDING`` cannot deadlock, ``REQUEST`` deadlocks when two transfers
cross the same pair of accounts in opposite directions.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog

from txnlab.domain.classifier import classify
from txnlab.domain.errors import InsufficientFunds
from txnlab.domain.outcome import Committed, FailureKind, FinalResult, Outcome
from txnlab.domain.types import (
    IsolationLevel,
    LockOrder,
    TransferRequest,
    TransferState,
    to_money,
)
from txnlab.services.base import BaseService
from txnlab.services.retry import RetryPolicy

if TYPE_CHECKING:
    from txnlab.infrastructure.ledger import Ledger

log = structlog.get_logger(__name__)

type FirstLockHook = Callable[[TransferRequest], None]


class TransferExecutor(BaseService):
    """Debit one account and credit another under a retry policy.

    Parameters:
        ledger: Shared ledger to transact against.
        lock_order: Row-lock acquisition policy.
        retry: Retry driver; defaults to a single attempt.
        isolation: Isolation level of each attempt's transaction.
        on_first_lock: Called while only the first row is locked. Used by
            experiments to line actors up so lock conflicts are reproducible.
    """

    def __init__(
        self,
        ledger: Ledger,
        *,
        lock_order: LockOrder = LockOrder.ASCENDING,
        retry: RetryPolicy | None = None,
        isolation: IsolationLevel = IsolationLevel.READ_COMMITTED,
        on_first_lock: FirstLockHook | None = None,
    ) -> None:
        super().__init__(ledger)
        self._lock_order = lock_order
        self._retry = retry or RetryPolicy(max_attempts=1)
        self._isolation = isolation
        self._on_first_lock = on_first_lock

    @property
    def lock_order(self) -> LockOrder:
        return self._lock_order

    def transfer(self, from_id: str, to_id: str, amount: Decimal | int | str) -> FinalResult:
        """Transfer *amount* from *from_id* to *to_id*, retrying conflicts.

        Raises ValueError for a self-transfer or a non-positive amount.
        """
        request = TransferRequest(from_id=from_id, to_id=to_id, amount=to_money(amount))
        result = self._retry.execute(lambda n: self.attempt(replace(request, attempt=n)))
        if not result.ok:
            log.info(
                "transfer.failed",
                from_id=from_id,
                to_id=to_id,
                amount=str(request.amount),
                kind=str(result.fatal_kind),
                attempts=result.attempts,
            )
        return result

    def attempt(self, request: TransferRequest) -> Outcome:
        """Run one attempt and classify how it ended."""
        order = request.lock_order(self._lock_order)
        state = TransferState.IDLE

        def locked(_row_id: str, index: int) -> None:
            nonlocal state
            if index == 0:
                state = TransferState.LOCK_ACQUIRED
                if self._on_first_lock is not None:
                    self._on_first_lock(request)

        try:
            with self._ledger.transaction(self._isolation) as txn:
                balances = txn.lock_and_read(order, on_locked=locked)

                source = balances[request.from_id]
                if source < request.amount:
                    raise InsufficientFunds(request.from_id, source, request.amount)
                state = TransferState.VALIDATED

                new_balances = txn.commit(
                    {
                        request.from_id: source - request.amount,
                        request.to_id: balances[request.to_id] + request.amount,
                    }
                )
        except Exception as exc:
            outcome = classify(exc)
            log.debug(
                "transfer.aborted",
                attempt=request.attempt,
                from_state=str(state),
                kind=str(outcome.kind),
                lock_order=[*order],
            )
            if outcome.kind is FailureKind.UNCLASSIFIED:
                log.error("transfer.unclassified_error", exc_info=exc)
            return outcome

        log.debug(
            "transfer.committed",
            attempt=request.attempt,
            state=str(TransferState.COMMITTED),
            balances={k: str(v) for k, v in new_balances.items()},
        )
        return Committed(new_balances=new_balances)
