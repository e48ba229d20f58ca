"""Database engine setup.

SQLite is the default persistence layer (a file under
``{root}/.txnlab/txnlab.db``); any SQLAlchemy URL works, and PostgreSQL
is the store whose deadlock and serialization semantics the lab mirrors.

SQLAlchemy Core (not ORM) is used: the ledger issues a handful of row
statements per transaction and owns its transaction boundaries directly.
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, event, insert, select
from sqlalchemy.engine import Engine, make_url

from txnlab.infrastructure.database.schema import accounts, metadata

if TYPE_CHECKING:
    from collections.abc import Iterable

SQLITE_BUSY_TIMEOUT_MS = 5000


def default_database_url(root: Path) -> str:
    """SQLite URL for ``{root}/.txnlab/txnlab.db``, creating the directory."""
    db_dir = root / ".txnlab"
    db_dir.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db_dir / 'txnlab.db'}"


def create_db_engine(url: str, *, busy_timeout_ms: int = SQLITE_BUSY_TIMEOUT_MS) -> Engine:
    """Create an engine; SQLite connections get WAL mode and a busy timeout.

    A SQLite writer that cannot get the database lock within
    *busy_timeout_ms* fails with "database is locked".

    For SQLite, pysqlite's own deferred BEGIN is disabled and SQLAlchemy
    emits ``BEGIN IMMEDIATE`` instead, so a ``SELECT`` issued to lock a
    row already runs inside a write transaction.
    """
    sa_url = make_url(url)
    if sa_url.get_backend_name() != "sqlite":
        return create_engine(url, echo=False, pool_pre_ping=True)

    engine = create_engine(url, echo=False, connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn: Any, _: Any) -> None:
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_database(
    url: str,
    seed: Iterable[tuple[str, Decimal]] = (),
    *,
    busy_timeout_ms: int = SQLITE_BUSY_TIMEOUT_MS,
) -> Engine:
    """Create all tables and insert any *seed* accounts that don't exist yet.

    Idempotent: existing rows keep their balances.

    Returns the engine ready for use.
    """
    engine = create_db_engine(url, busy_timeout_ms=busy_timeout_ms)
    metadata.create_all(engine)
    _seed_accounts(engine, seed)
    return engine


def _seed_accounts(engine: Engine, seed: Iterable[tuple[str, Decimal]]) -> None:
    with engine.begin() as conn:
        for account_id, balance in seed:
            row = conn.execute(select(accounts.c.id).where(accounts.c.id == account_id)).first()
            if row is None:
                conn.execute(
                    insert(accounts).values(
                        id=account_id,
                        owner_name=account_id.title(),
                        balance=balance,
                        version=0,
                    )
                )
