"""Shared pytest fixtures and test helpers for txnlab tests."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Generator
from decimal import Decimal
from pathlib import Path

import pytest
from click.testing import CliRunner
from sqlalchemy.engine import Engine

from txnlab.domain.types import TransferRequest
from txnlab.infrastructure.database import SqlStore, init_database
from txnlab.infrastructure.ledger import Ledger
from txnlab.infrastructure.memory import InMemoryStore

STARTING_BALANCE = Decimal("1000")


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def memory_store() -> InMemoryStore:
    """In-memory store holding accounts A and B with 1000 each."""
    store = InMemoryStore()
    store.create_account("A", STARTING_BALANCE)
    store.create_account("B", STARTING_BALANCE)
    return store


@pytest.fixture
def ledger(memory_store: InMemoryStore) -> Ledger:
    """Ledger over the two-account in-memory store."""
    return Ledger(memory_store)


@pytest.fixture
def db_engine(tmp_path: Path) -> Generator[Engine]:
    """Initialized SQLite engine seeded with A and B at 1000."""
    engine = init_database(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        [("A", STARTING_BALANCE), ("B", STARTING_BALANCE)],
    )
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sql_ledger(db_engine: Engine) -> Ledger:
    """Ledger over the seeded SQLite database."""
    return Ledger(SqlStore(db_engine))


@pytest.fixture(autouse=True)
def _restore_logging() -> Generator[None]:
    """Undo handler changes made by ``configure_logging`` during a test.

    CLI invocations bind a handler to CliRunner's temporary stderr, which
    is closed once the invocation returns.
    """
    root, txn = logging.getLogger(), logging.getLogger("txnlab")
    handlers, level, txn_level = root.handlers[:], root.level, txn.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    txn.setLevel(txn_level)


@pytest.fixture
def _isolated_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Run the CLI from an empty temp directory with no config in the environment.

    Use via ``@pytest.mark.usefixtures("_isolated_root")`` on command test
    classes.
    """
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("TXNLAB_CONFIG", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)


# ---------------------------------------------------------------------------
# Shared test helpers
# ---------------------------------------------------------------------------


def first_attempt_barrier(parties: int) -> Callable[[TransferRequest], None]:
    """Hook that makes *parties* first attempts meet after their first lock.

    Retries pass straight through, so a deadlock victim can finish while
    the survivor completes.
    """
    barrier = threading.Barrier(parties)

    def hook(request: TransferRequest) -> None:
        if request.attempt == 1:
            barrier.wait(timeout=5)

    return hook
