"""Tests for Ledger and LedgerTransaction scopes."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from txnlab.config.settings import TxnLabSettings
from txnlab.domain.types import IsolationLevel
from txnlab.infrastructure.database import SqlStore
from txnlab.infrastructure.ledger import Ledger
from txnlab.infrastructure.memory import InMemoryStore


class TestLedger:
    def test_balances_and_total(self, ledger: Ledger) -> None:
        assert ledger.balances() == {"A": Decimal("1000"), "B": Decimal("1000")}
        assert ledger.total() == Decimal("2000")

    def test_open_account(self, ledger: Ledger) -> None:
        account = ledger.open_account("C", "12.50", owner_name="Carol")
        assert account.balance == Decimal("12.50")
        assert ledger.get("C").owner_name == "Carol"

    def test_reset_overwrites_and_creates(self, ledger: Ledger) -> None:
        ledger.reset({"A": 5, "C": "7"})
        assert ledger.balances() == {
            "A": Decimal("5"),
            "B": Decimal("1000"),
            "C": Decimal("7"),
        }


class TestTransactionScope:
    def test_commit_applies_all_updates(self, ledger: Ledger) -> None:
        with ledger.transaction() as txn:
            balances = txn.lock_and_read(["A", "B"])
            written = txn.commit({"A": balances["A"] - 100, "B": balances["B"] + 100})
        assert written == {"A": Decimal("900"), "B": Decimal("1100")}
        assert ledger.balances() == {"A": Decimal("900"), "B": Decimal("1100")}

    def test_exception_rolls_back(self, ledger: Ledger, memory_store: InMemoryStore) -> None:
        with pytest.raises(RuntimeError), ledger.transaction() as txn:
            txn.lock_and_read(["A", "B"])
            txn.write("A", 0)
            raise RuntimeError("crash")
        assert ledger.balances() == {"A": Decimal("1000"), "B": Decimal("1000")}
        assert memory_store.lock_holder("A") is None

    def test_leaving_without_commit_rolls_back(self, ledger: Ledger) -> None:
        with ledger.transaction() as txn:
            txn.write("A", 1)
            assert txn.read("A") == Decimal("1")
        assert not txn.active
        assert ledger.get("A").balance == Decimal("1000")

    def test_lock_callback_sees_each_row_in_order(self, ledger: Ledger) -> None:
        calls: list[tuple[str, int]] = []
        with ledger.transaction() as txn:
            txn.lock_and_read(["B", "A"], on_locked=lambda row, i: calls.append((row, i)))
        assert calls == [("B", 0), ("A", 1)]

    def test_isolation_is_exposed(self, ledger: Ledger) -> None:
        with ledger.transaction(IsolationLevel.SERIALIZABLE) as txn:
            assert txn.isolation is IsolationLevel.SERIALIZABLE


class TestFromSettings:
    def test_memory_backend_seeds_accounts(self, tmp_path: Path) -> None:
        settings = TxnLabSettings.from_cli(root=tmp_path)
        ledger = Ledger.from_settings(settings)
        assert isinstance(ledger.store, InMemoryStore)
        assert ledger.balances() == {"alice": Decimal("1000"), "bob": Decimal("1000")}
        assert ledger.get("alice").owner_name == "Alice"

    def test_sql_backend_defaults_to_sqlite_under_root(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("TXNLAB_LEDGER__BACKEND", "sql")
        settings = TxnLabSettings.from_cli(root=tmp_path)
        ledger = Ledger.from_settings(settings)
        try:
            assert isinstance(ledger.store, SqlStore)
            assert (tmp_path / ".txnlab" / "txnlab.db").is_file()
            assert ledger.total() == Decimal("2000")
        finally:
            ledger.close()
