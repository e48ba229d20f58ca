"""Unified settings: CLI flags, env vars, and TOML config in one object.

Priority chain (highest to lowest):
  1. Init kwargs: CLI flags passed by Click
  2. Env vars: ``TXNLAB_*`` prefix, ``__`` for nesting
     (e.g. ``TXNLAB_RETRY__MAX_ATTEMPTS=6``)
  3. TOML file: ``txnlab.toml`` discovered via walk-up
  4. Code defaults: baked into the section models

The SQL database URL additionally falls back to ``DATABASE_URL`` before
the default SQLite file under ``{root}/.txnlab/``.
"""

from __future__ import annotations

import os
import threading
import tomllib
from pathlib import Path
from typing import Any

import click
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from txnlab.config.discovery import resolve_config
from txnlab.config.models import ExperimentConfig, LedgerConfig, RetryConfig, TxnLabConfig

DATABASE_URL_ENV_VAR = "DATABASE_URL"


class TomlSettingsSource(PydanticBaseSettingsSource):
    """Read settings from a ``txnlab.toml`` file."""

    def __init__(self, settings_cls: type[BaseSettings], toml_path: Path | None) -> None:
        super().__init__(settings_cls)
        self._data: dict[str, Any] = {}
        if toml_path and toml_path.is_file():
            raw = toml_path.read_text(encoding="utf-8")
            try:
                self._data = tomllib.loads(raw)
            except tomllib.TOMLDecodeError as exc:
                msg = f"Invalid TOML in {toml_path}: {exc}"
                raise click.ClickException(msg) from exc

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        val = self._data.get(field_name)
        return val, field_name, field_name in self._data

    def __call__(self) -> dict[str, Any]:
        return self._data


# TOML path handed to settings_customise_sources during construction.
_tls = threading.local()


class TxnLabSettings(BaseSettings):
    """Unified settings for the txnlab CLI, frozen after construction.

    Attributes:
        root: Directory holding ``txnlab.toml`` (or CWD), home of the
            default SQLite database.
        config_path: The TOML file in effect, or None.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "TXNLAB_",
        "env_nested_delimiter": "__",
    }

    root: Path = Field(default_factory=Path.cwd)
    config_path: Path | None = None

    # --- CLI flags ---
    json_output: bool = False
    quiet: bool = False
    verbose: bool = False
    log_json: bool = False

    # --- TOML sections ---
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    experiment: ExperimentConfig = Field(default_factory=ExperimentConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert TOML source between env vars and defaults."""
        toml_path = getattr(_tls, "toml_path", None)
        return (
            init_settings,
            env_settings,
            TomlSettingsSource(settings_cls, toml_path),
        )

    @classmethod
    def from_cli(
        cls,
        *,
        config_path: str | None = None,
        root: Path | None = None,
        **cli_flags: Any,
    ) -> TxnLabSettings:
        """Construct settings from a CLI invocation.

        Discovers ``txnlab.toml`` via walk-up (or explicit *config_path*),
        resolves *root* from the config file's parent directory, and
        merges CLI flags as highest-priority overrides.
        """
        try:
            toml_path = resolve_config(config_path, root)
        except FileNotFoundError as exc:
            raise click.ClickException(str(exc)) from exc

        resolved_root = root
        if resolved_root is None:
            resolved_root = toml_path.parent if toml_path else Path.cwd()

        _tls.toml_path = toml_path
        try:
            return cls(root=resolved_root, config_path=toml_path, **cli_flags)
        finally:
            _tls.toml_path = None

    def database_url(self) -> str | None:
        """Configured SQL URL, else ``DATABASE_URL``, else None (use default)."""
        return self.ledger.database_url or os.environ.get(DATABASE_URL_ENV_VAR) or None

    def to_config(self) -> TxnLabConfig:
        """The TOML-shaped sections alone, as handed to services."""
        return TxnLabConfig(ledger=self.ledger, retry=self.retry, experiment=self.experiment)
