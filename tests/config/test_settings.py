"""Tests for TxnLabSettings: unified settings with TOML source."""

from decimal import Decimal
from pathlib import Path

import click
import pytest

from txnlab.config.settings import TxnLabSettings
from txnlab.domain.types import IsolationLevel, LockOrder


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("TXNLAB_CONFIG", "DATABASE_URL", "TXNLAB_RETRY__MAX_ATTEMPTS"):
        monkeypatch.delenv(name, raising=False)


class TestTxnLabSettingsDefaults:
    def test_all_defaults(self, tmp_path: Path) -> None:
        """With no TOML and no env vars, all fields use code defaults."""
        settings = TxnLabSettings.from_cli(root=tmp_path)
        assert settings.root == tmp_path
        assert settings.config_path is None
        assert settings.json_output is False
        assert settings.ledger.backend == "memory"
        assert settings.ledger.accounts == ["alice", "bob"]
        assert settings.ledger.starting_balance == Decimal("1000")
        assert settings.retry.max_attempts == 4
        assert settings.experiment.lock_order is LockOrder.ASCENDING
        assert settings.experiment.isolation is IsolationLevel.READ_COMMITTED
        assert settings.experiment.lockstep is True
        assert settings.experiment.rendezvous is False

    def test_frozen(self, tmp_path: Path) -> None:
        settings = TxnLabSettings.from_cli(root=tmp_path)
        with pytest.raises(Exception):
            settings.quiet = True  # type: ignore[misc]


class TestTomlSource:
    def test_loads_from_toml(self, tmp_path: Path) -> None:
        (tmp_path / "txnlab.toml").write_text(
            '[retry]\nmax_attempts = 7\n[experiment]\nlock_order = "request"\n'
        )
        settings = TxnLabSettings.from_cli(root=tmp_path)
        assert settings.retry.max_attempts == 7
        assert settings.retry.base_delay == 0.05  # default preserved
        assert settings.experiment.lock_order is LockOrder.REQUEST

    def test_root_follows_discovered_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (tmp_path / "txnlab.toml").write_text("")
        child = tmp_path / "nested"
        child.mkdir()
        monkeypatch.chdir(child)
        settings = TxnLabSettings.from_cli()
        assert settings.root == tmp_path.resolve()
        assert settings.config_path == tmp_path.resolve() / "txnlab.toml"

    def test_explicit_config_path(self, tmp_path: Path) -> None:
        custom = tmp_path / "custom" / "lab.toml"
        custom.parent.mkdir(parents=True)
        custom.write_text('[ledger]\naccounts = ["x", "y", "z"]\n')
        settings = TxnLabSettings.from_cli(config_path=str(custom), root=tmp_path)
        assert settings.ledger.accounts == ["x", "y", "z"]
        assert settings.config_path == custom

    def test_invalid_toml_is_a_click_error(self, tmp_path: Path) -> None:
        (tmp_path / "txnlab.toml").write_text("[retry\n")
        with pytest.raises(click.ClickException, match="Invalid TOML"):
            TxnLabSettings.from_cli(root=tmp_path)


class TestPriority:
    def test_env_beats_toml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "txnlab.toml").write_text("[retry]\nmax_attempts = 7\n")
        monkeypatch.setenv("TXNLAB_RETRY__MAX_ATTEMPTS", "9")
        settings = TxnLabSettings.from_cli(root=tmp_path)
        assert settings.retry.max_attempts == 9

    def test_cli_flags_beat_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TXNLAB_QUIET", "false")
        settings = TxnLabSettings.from_cli(root=tmp_path, quiet=True)
        assert settings.quiet is True


class TestDatabaseUrl:
    def test_none_by_default(self, tmp_path: Path) -> None:
        assert TxnLabSettings.from_cli(root=tmp_path).database_url() is None

    def test_database_url_env_fallback(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://lab@localhost/lab")
        assert TxnLabSettings.from_cli(root=tmp_path).database_url() == (
            "postgresql://lab@localhost/lab"
        )

    def test_config_wins_over_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://lab@localhost/lab")
        (tmp_path / "txnlab.toml").write_text('[ledger]\ndatabase_url = "sqlite:///x.db"\n')
        assert TxnLabSettings.from_cli(root=tmp_path).database_url() == "sqlite:///x.db"

    def test_to_config_carries_sections(self, tmp_path: Path) -> None:
        settings = TxnLabSettings.from_cli(root=tmp_path)
        config = settings.to_config()
        assert config.retry == settings.retry
        assert config.experiment == settings.experiment
