"""Ledger: the shared account book every actor transacts against.

The Ledger is the single dependency injected into every service. It
wraps a :class:`~txnlab.infrastructure.store.Store` and hands out
:class:`LedgerTransaction` scopes through :meth:`Ledger.transaction`:

- **Locks**: :meth:`LedgerTransaction.lock_and_read` locks rows in exactly
  the order the caller gives. The Ledger never reorders; lock order is
  the caller's policy.
- **Atomicity**: staged writes become visible only on
  :meth:`LedgerTransaction.commit`. Leaving the ``with`` block without
  committing (normally or by exception) rolls everything back.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from txnlab.domain.types import IsolationLevel, to_money

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping, Sequence

    from txnlab.config.settings import TxnLabSettings
    from txnlab.domain.types import Account
    from txnlab.infrastructure.store import Store, TxnHandle

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# LedgerTransaction: yielded to callers within transaction()
# ---------------------------------------------------------------------------


@dataclass
class LedgerTransaction:
    """One open transaction scope against the ledger's store."""

    handle: TxnHandle
    _store: Store = field(repr=False)
    _staged: dict[str, Decimal] = field(default_factory=dict, repr=False)

    @property
    def isolation(self) -> IsolationLevel:
        return self.handle.isolation

    @property
    def active(self) -> bool:
        return self.handle.active

    def lock_and_read(
        self,
        ids: Sequence[str],
        *,
        on_locked: Callable[[str, int], None] | None = None,
    ) -> dict[str, Decimal]:
        """Lock *ids* one by one in the given order and return their balances.

        Blocks while another transaction holds a row. *on_locked* is called
        with ``(row_id, index)`` right after each lock is taken.
        """
        balances: dict[str, Decimal] = {}
        for index, row_id in enumerate(ids):
            balances[row_id] = self._store.lock_row_for_update(self.handle, row_id)
            if on_locked is not None:
                on_locked(row_id, index)
        return balances

    def read(self, row_id: str) -> Decimal:
        """Plain read; what it sees depends on the isolation level."""
        if row_id in self._staged:
            return self._staged[row_id]
        return self._store.read_row(self.handle, row_id)

    def write(self, row_id: str, balance: Decimal | int | str) -> None:
        """Stage a new balance. Takes the row lock, like ``UPDATE`` does."""
        value = to_money(balance)
        self._store.write_row(self.handle, row_id, value)
        self._staged[row_id] = value

    def commit(self, updates: Mapping[str, Decimal] | None = None) -> dict[str, Decimal]:
        """Apply staged writes plus *updates* atomically and release all locks.

        Returns every balance this transaction wrote.
        """
        for row_id, balance in (updates or {}).items():
            self.write(row_id, balance)
        self._store.commit(self.handle)
        return dict(self._staged)

    def rollback(self) -> None:
        """Release locks without applying anything. Safe to call twice."""
        self._staged.clear()
        self._store.rollback(self.handle)


# ---------------------------------------------------------------------------
# Ledger: the shared account book
# ---------------------------------------------------------------------------


class Ledger:
    """Account book over a store. Safe to share across threads."""

    def __init__(self, store: Store) -> None:
        self._store = store

    @classmethod
    def from_settings(cls, settings: TxnLabSettings) -> Ledger:
        """Build the ledger described by the ``[ledger]`` section.

        The memory backend starts every configured account at the starting
        balance. The SQL backend creates the schema and seeds missing
        accounts, leaving existing balances alone.
        """
        cfg = settings.ledger
        if cfg.backend == "memory":
            from txnlab.infrastructure.memory import InMemoryStore

            store: Store = InMemoryStore()
            for account_id in cfg.accounts:
                store.create_account(
                    account_id, cfg.starting_balance, owner_name=account_id.title()
                )
            return cls(store)

        from txnlab.infrastructure.database import SqlStore, default_database_url, init_database

        url = settings.database_url() or default_database_url(settings.root)
        engine = init_database(url, [(a, cfg.starting_balance) for a in cfg.accounts])
        logger.debug("sql ledger at %s", engine.url.render_as_string(hide_password=True))
        return cls(SqlStore(engine))

    @property
    def store(self) -> Store:
        return self._store

    def get(self, account_id: str) -> Account:
        """Committed state of one account. Raises AccountNotFound."""
        return self._store.get_account(account_id)

    def accounts(self) -> list[Account]:
        return self._store.list_accounts()

    def balances(self) -> dict[str, Decimal]:
        return {account.id: account.balance for account in self.accounts()}

    def total(self) -> Decimal:
        """Sum of all committed balances: constant across transfers."""
        return sum((account.balance for account in self.accounts()), Decimal(0))

    def open_account(
        self,
        account_id: str,
        balance: Decimal | int | str = 0,
        *,
        owner_name: str | None = None,
    ) -> Account:
        return self._store.create_account(account_id, to_money(balance), owner_name=owner_name)

    def reset(self, balances: Mapping[str, Decimal | int | str]) -> None:
        """Set committed balances (creating accounts as needed) between runs."""
        self._store.set_balances({k: to_money(v) for k, v in balances.items()})
        logger.debug("ledger reset: %s", ", ".join(f"{k}={v}" for k, v in balances.items()))

    def close(self) -> None:
        self._store.close()

    @contextmanager
    def transaction(
        self, isolation: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> Iterator[LedgerTransaction]:
        """Open a transaction scope; anything not committed is rolled back.

        Usage::

            with ledger.transaction(IsolationLevel.SERIALIZABLE) as txn:
                balances = txn.lock_and_read(["alice", "bob"])
                txn.commit({"alice": balances["alice"] - 100,
                            "bob": balances["bob"] + 100})
        """
        handle = self._store.begin_transaction(isolation)
        txn = LedgerTransaction(handle=handle, _store=self._store)
        try:
            yield txn
        finally:
            if handle.active:
                txn.rollback()
