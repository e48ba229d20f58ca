"""Error vocabulary raised by stores, the ledger, and business rules.

Every error carries a ``kind`` string; the classifier maps kinds to
retry decisions. Stores translate their native failures into these
types so nothing above the infrastructure layer sees driver exceptions.
"""

from __future__ import annotations

from decimal import Decimal
from typing import ClassVar


class LedgerError(Exception):
    """Base class for every error the ledger can produce."""

    kind: ClassVar[str] = "ledger_error"


class DeadlockDetected(LedgerError):
    """The store broke a circular wait by aborting this transaction."""

    kind = "deadlock_detected"


class SerializationFailure(LedgerError):
    """A concurrent commit invalidated what this transaction read or wrote."""

    kind = "serialization_failure"


class StoreConnectionError(LedgerError):
    """The backing store was unreachable or failed below the SQL level."""

    kind = "connection_error"


class AccountNotFound(LedgerError):
    kind = "account_not_found"

    def __init__(self, account_id: str) -> None:
        super().__init__(f"Account not found: {account_id!r}")
        self.account_id = account_id


class InsufficientFunds(LedgerError):
    """Business-rule violation: the debit would overdraw the account."""

    kind = "insufficient_funds"

    def __init__(self, account_id: str, balance: Decimal, amount: Decimal) -> None:
        super().__init__(
            f"Insufficient balance in {account_id!r}: has {balance}, needs {amount}"
        )
        self.account_id = account_id
        self.balance = balance
        self.amount = amount
