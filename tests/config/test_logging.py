"""Tests for structlog configuration."""

from __future__ import annotations

import json
import logging
import threading

import pytest
import structlog

from txnlab.config.logging import configure_logging


class TestConfigureLogging:
    def test_verbose_enables_debug(self) -> None:
        configure_logging(verbose=True, log_json=False)
        assert logging.getLogger("txnlab").level == logging.DEBUG
        assert logging.getLogger().level == logging.WARNING

    def test_non_verbose_sets_warning(self) -> None:
        configure_logging(verbose=False, log_json=False)
        assert logging.getLogger("txnlab").level == logging.WARNING

    def test_json_mode_output(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=True, log_json=True)
        log = structlog.get_logger("txnlab.test")
        log.warning("retry.exhausted", attempts=4, kind="deadlock_detected")
        parsed = json.loads(capfd.readouterr().err.strip())
        assert parsed["event"] == "retry.exhausted"
        assert parsed["attempts"] == 4
        assert parsed["level"] == "warning"
        assert parsed["logger"] == "txnlab.test"
        assert "timestamp" in parsed

    def test_stdlib_store_logger_gets_structured_fields(
        self, capfd: pytest.CaptureFixture[str]
    ) -> None:
        configure_logging(verbose=True, log_json=True)
        logging.getLogger("txnlab.infrastructure.memory").debug("txn %d rolled back", 7)
        parsed = json.loads(capfd.readouterr().err.strip())
        assert parsed["event"] == "txn 7 rolled back"
        assert parsed["level"] == "debug"

    def test_debug_hidden_without_verbose(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=False, log_json=True)
        structlog.get_logger("txnlab.test").debug("retry.scheduled")
        logging.getLogger("sqlalchemy.engine").info("SELECT 1")
        assert capfd.readouterr().err == ""

    def test_idempotent_calls(self) -> None:
        configure_logging(verbose=True)
        configure_logging(verbose=True)
        assert len(logging.getLogger().handlers) == 1

    def test_worker_events_carry_thread_name(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging(verbose=True, log_json=True)
        log = structlog.get_logger("txnlab.test")
        worker = threading.Thread(
            target=lambda: log.debug("transfer.committed", attempt=1), name="actor_3"
        )
        worker.start()
        worker.join()
        log.debug("harness.complete")
        first, second = (json.loads(line) for line in capfd.readouterr().err.splitlines())
        assert first["thread"] == "actor_3"
        assert "thread" not in second
