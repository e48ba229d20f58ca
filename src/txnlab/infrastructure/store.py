"""Store protocol: the narrow interface every backing store implements.

The ledger never talks to a database directly. A store hands out
transaction handles and row-level operations; whether rows live in a
Python dict guarded by condition variables or in PostgreSQL is invisible
to the layers above.

Stores raise only :mod:`txnlab.domain.errors` types.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping
    from decimal import Decimal

    from txnlab.domain.types import Account, IsolationLevel


@runtime_checkable
class TxnHandle(Protocol):
    """Opaque handle for one open transaction."""

    txn_id: int
    isolation: IsolationLevel

    @property
    def active(self) -> bool: ...


@runtime_checkable
class Store(Protocol):
    """Row store with exclusive row locks and isolation-aware reads."""

    def begin_transaction(self, isolation: IsolationLevel) -> TxnHandle: ...

    def lock_row_for_update(self, txn: TxnHandle, row_id: str) -> Decimal:
        """Block until *row_id* is exclusively locked by *txn*; return its balance.

        Raises DeadlockDetected, SerializationFailure or AccountNotFound.
        """
        ...

    def read_row(self, txn: TxnHandle, row_id: str) -> Decimal: ...

    def write_row(self, txn: TxnHandle, row_id: str, value: Decimal) -> None: ...

    def commit(self, txn: TxnHandle) -> None: ...

    def rollback(self, txn: TxnHandle) -> None: ...

    # --- Administration (outside any caller transaction) ---

    def create_account(
        self, account_id: str, balance: Decimal, *, owner_name: str | None = None
    ) -> Account: ...

    def get_account(self, account_id: str) -> Account: ...

    def list_accounts(self) -> list[Account]: ...

    def set_balances(self, balances: Mapping[str, Decimal]) -> None: ...

    def close(self) -> None: ...
