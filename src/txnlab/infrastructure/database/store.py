"""SqlStore: the Store protocol over a SQLAlchemy engine.

Each transaction handle owns one pooled connection for its lifetime.
Row locks are ``SELECT ... FOR UPDATE``; the database decides blocking,
deadlock victims and serialization failures, and :func:`translate_errors`
maps its native error codes onto the ledger's error vocabulary:

=====================================  ========================
Driver signal                          Ledger error
=====================================  ========================
SQLSTATE ``40P01`` / MySQL ``1213``    DeadlockDetected
SQLite ``database is locked``          DeadlockDetected
SQLSTATE ``40001``                     SerializationFailure
other operational/interface errors     StoreConnectionError
anything else from the driver          LedgerError (unclassified)
=====================================  ========================

SQLite has no row locks; :func:`create_db_engine` opens every SQLite
transaction with ``BEGIN IMMEDIATE`` so writers serialize on the database
lock (bounded by ``busy_timeout``) and isolation is always serializable.
"""

from __future__ import annotations

import itertools
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import insert, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

from txnlab.domain.errors import (
    AccountNotFound,
    DeadlockDetected,
    LedgerError,
    SerializationFailure,
    StoreConnectionError,
)
from txnlab.domain.types import Account, IsolationLevel, to_amount, to_money
from txnlab.infrastructure.database.schema import accounts

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from sqlalchemy import Connection
    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

PG_DEADLOCK_DETECTED = "40P01"
PG_SERIALIZATION_FAILURE = "40001"
MYSQL_LOCK_DEADLOCK = 1213
_SQLITE_LOCKED_MESSAGES = ("database is locked", "database table is locked")


def translate_error(exc: DBAPIError) -> LedgerError:
    """Map a SQLAlchemy-wrapped driver error onto the ledger vocabulary."""
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    message = str(orig) if orig is not None else str(exc)

    if code == PG_DEADLOCK_DETECTED:
        return DeadlockDetected(message)
    if code == PG_SERIALIZATION_FAILURE:
        return SerializationFailure(message)
    args = getattr(orig, "args", ())
    if args and args[0] == MYSQL_LOCK_DEADLOCK:
        return DeadlockDetected(message)
    if any(text in message.lower() for text in _SQLITE_LOCKED_MESSAGES):
        return DeadlockDetected(message)
    if isinstance(exc, (OperationalError, InterfaceError)) or exc.connection_invalidated:
        return StoreConnectionError(message)
    return LedgerError(message)


@contextmanager
def translate_errors() -> Iterator[None]:
    """Re-raise driver errors raised inside the block as ledger errors."""
    try:
        yield
    except DBAPIError as exc:
        raise translate_error(exc) from exc


@dataclass
class SqlTxn:
    """Transaction handle issued by :class:`SqlStore`."""

    txn_id: int
    isolation: IsolationLevel
    conn: Connection = field(repr=False)
    _active: bool = field(default=True, repr=False)

    @property
    def active(self) -> bool:
        return self._active


class SqlStore:
    """SQLAlchemy-backed store implementing :class:`~txnlab.infrastructure.store.Store`."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._txn_ids = itertools.count(1)
        self._sqlite = engine.dialect.name == "sqlite"

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def dialect(self) -> str:
        """SQLAlchemy dialect name, e.g. ``"sqlite"`` or ``"postgresql"``."""
        return self._engine.dialect.name

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin_transaction(self, isolation: IsolationLevel) -> SqlTxn:
        with translate_errors():
            conn = self._engine.connect()
            try:
                if not self._sqlite:
                    conn.execution_options(isolation_level=isolation.sql_name)
                conn.begin()
            except BaseException:
                conn.close()
                raise
        return SqlTxn(txn_id=next(self._txn_ids), isolation=isolation, conn=conn)

    def lock_row_for_update(self, txn: SqlTxn, row_id: str) -> Decimal:
        stmt = select(accounts.c.balance).where(accounts.c.id == row_id).with_for_update()
        with translate_errors():
            row = _require_active(txn).execute(stmt).first()
        if row is None:
            raise AccountNotFound(row_id)
        return to_amount(row.balance)

    def read_row(self, txn: SqlTxn, row_id: str) -> Decimal:
        stmt = select(accounts.c.balance).where(accounts.c.id == row_id)
        with translate_errors():
            row = _require_active(txn).execute(stmt).first()
        if row is None:
            raise AccountNotFound(row_id)
        return to_amount(row.balance)

    def write_row(self, txn: SqlTxn, row_id: str, value: Decimal) -> None:
        stmt = (
            update(accounts)
            .where(accounts.c.id == row_id)
            .values(balance=to_money(value), version=accounts.c.version + 1)
        )
        with translate_errors():
            result = _require_active(txn).execute(stmt)
        if result.rowcount == 0:
            raise AccountNotFound(row_id)

    def commit(self, txn: SqlTxn) -> None:
        try:
            with translate_errors():
                _require_active(txn).commit()
        finally:
            self._close(txn)

    def rollback(self, txn: SqlTxn) -> None:
        if not txn.active:
            return
        try:
            with translate_errors():
                txn.conn.rollback()
        finally:
            self._close(txn)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def create_account(
        self, account_id: str, balance: Decimal, *, owner_name: str | None = None
    ) -> Account:
        stmt = insert(accounts).values(
            id=account_id, owner_name=owner_name, balance=to_money(balance), version=0
        )
        try:
            with self._engine.begin() as conn:
                conn.execute(stmt)
        except IntegrityError as exc:
            msg = f"Account already exists: {account_id!r}"
            raise ValueError(msg) from exc
        except DBAPIError as exc:
            raise translate_error(exc) from exc
        return Account(id=account_id, balance=to_amount(balance), owner_name=owner_name)

    def get_account(self, account_id: str) -> Account:
        with translate_errors(), self._engine.connect() as conn:
            row = conn.execute(select(accounts).where(accounts.c.id == account_id)).first()
        if row is None:
            raise AccountNotFound(account_id)
        return _to_account(row)

    def list_accounts(self) -> list[Account]:
        with translate_errors(), self._engine.connect() as conn:
            rows = conn.execute(select(accounts).order_by(accounts.c.id)).fetchall()
        return [_to_account(row) for row in rows]

    def set_balances(self, balances: Mapping[str, Decimal]) -> None:
        with translate_errors(), self._engine.begin() as conn:
            for account_id, balance in balances.items():
                result = conn.execute(
                    update(accounts)
                    .where(accounts.c.id == account_id)
                    .values(balance=to_money(balance), version=accounts.c.version + 1)
                )
                if result.rowcount == 0:
                    conn.execute(
                        insert(accounts).values(
                            id=account_id, balance=to_money(balance), version=0
                        )
                    )

    def close(self) -> None:
        self._engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _close(self, txn: SqlTxn) -> None:
        txn._active = False
        try:
            txn.conn.close()
        except DBAPIError:
            logger.warning("Failed to close connection for txn %d", txn.txn_id, exc_info=True)


def _require_active(txn: SqlTxn) -> Connection:
    if not txn.active:
        msg = f"Transaction {txn.txn_id} is no longer active"
        raise RuntimeError(msg)
    return txn.conn


def _to_account(row: Any) -> Account:
    return Account(
        id=row.id,
        balance=to_amount(row.balance),
        version=row.version,
        owner_name=row.owner_name,
    )
