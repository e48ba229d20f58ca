"""Accounts, transfer requests, and the policy enums that shape a run.

Balances are :class:`~decimal.Decimal` everywhere; floats never touch money.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import StrEnum

CENT = Decimal("0.01")


class LockOrder(StrEnum):
    """Row-lock acquisition policy for a two-account transfer."""

    ASCENDING = "ascending"
    REQUEST = "request"


class IsolationLevel(StrEnum):
    """Transaction isolation levels understood by every store."""

    READ_COMMITTED = "read_committed"
    REPEATABLE_READ = "repeatable_read"
    SERIALIZABLE = "serializable"

    @property
    def sql_name(self) -> str:
        """The SQL spelling, e.g. ``"REPEATABLE READ"``."""
        return self.value.replace("_", " ").upper()

    @property
    def uses_snapshot(self) -> bool:
        return self is not IsolationLevel.READ_COMMITTED


class TransferState(StrEnum):
    """Per-attempt state machine of a transfer."""

    IDLE = "idle"
    LOCK_ACQUIRED = "lock_acquired"
    VALIDATED = "validated"
    COMMITTED = "committed"
    ABORTED = "aborted"


def to_amount(value: Decimal | int | float | str) -> Decimal:
    """Coerce *value* to a Decimal without binary-float artifacts.

    Raises ValueError for anything that is not a finite number.
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        msg = f"not a decimal amount: {value!r}"
        raise ValueError(msg) from exc
    if not amount.is_finite():
        msg = f"not a finite amount: {value!r}"
        raise ValueError(msg)
    return amount


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Coerce *value* to a Decimal amount in whole cents.

    Stores keep balances as ``NUMERIC(12,2)``; a finer amount would be
    rounded on write, so it is rejected here instead.

    Raises ValueError for non-numbers and sub-cent amounts.
    """
    amount = to_amount(value)
    try:
        exact = amount == amount.quantize(CENT)
    except InvalidOperation as exc:
        msg = f"amount out of range: {value!r}"
        raise ValueError(msg) from exc
    if not exact:
        msg = f"amounts are whole cents, got {value!r}"
        raise ValueError(msg)
    return amount


@dataclass(frozen=True)
class Account:
    """A committed account row as seen outside any transaction."""

    id: str
    balance: Decimal
    version: int = 0
    owner_name: str | None = None


@dataclass(frozen=True)
class TransferRequest:
    """One attempt's view of a transfer of *amount* from one account to another."""

    from_id: str
    to_id: str
    amount: Decimal
    attempt: int = 1

    def __post_init__(self) -> None:
        if self.from_id == self.to_id:
            msg = f"Cannot transfer from an account to itself: {self.from_id!r}"
            raise ValueError(msg)
        amount = to_money(self.amount)
        if amount <= 0:
            msg = f"Transfer amount must be positive, got {amount}"
            raise ValueError(msg)
        if self.attempt < 1:
            msg = f"Attempt numbers start at 1, got {self.attempt}"
            raise ValueError(msg)
        object.__setattr__(self, "amount", amount)

    def lock_order(self, policy: LockOrder) -> tuple[str, str]:
        """Return the two account ids in the order their rows get locked.

        ``ASCENDING`` sorts the ids so every actor agrees on one total order
        and no circular wait can form. ``REQUEST`` locks the debited account
        first, which deadlocks when two transfers cross the same pair.
        """
        if policy is LockOrder.ASCENDING:
            first, second = sorted((self.from_id, self.to_id))
            return first, second
        return self.from_id, self.to_id
