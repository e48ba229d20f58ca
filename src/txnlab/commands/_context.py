"""AppContext: shared Click context for all commands.

Created once by the root CLI group and flows to all subcommands via
``@click.pass_obj``.  Provides lazy Ledger initialization and centralized
result emission (stdout/stderr routing + exit codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from txnlab.output.formatters import OutputSettings, format_result

if TYPE_CHECKING:
    from txnlab.config.settings import TxnLabSettings
    from txnlab.infrastructure.ledger import Ledger
    from txnlab.services.experiment import ExperimentService
    from txnlab.services.result import ServiceResult


class AppContext:
    """Shared context flowing through Click's command hierarchy.

    The ledger is built on first use so ``--help`` and ``--version``
    never touch a database.
    """

    def __init__(self, settings: TxnLabSettings) -> None:
        self.settings = settings
        self._ledger: Ledger | None = None

        from txnlab.config.logging import configure_logging

        configure_logging(verbose=settings.verbose, log_json=settings.log_json)

        if settings.verbose:
            from txnlab.services.telemetry import enable_telemetry

            enable_telemetry()

    @property
    def ledger(self) -> Ledger:
        """The ledger instance (created lazily on first access)."""
        if self._ledger is None:
            from txnlab.infrastructure.ledger import Ledger

            self._ledger = Ledger.from_settings(self.settings)
        return self._ledger

    def service(self) -> ExperimentService:
        from txnlab.services.experiment import ExperimentService

        return ExperimentService(self.ledger, self.settings.to_config())

    def emit(self, result: ServiceResult) -> None:
        """Format and output a ServiceResult with correct exit semantics.

        * Success (``result.ok``): writes to stdout, returns normally.
          Warnings go to stderr so they don't pollute piped output.
        * Failure: writes to stderr, exits with code 1.
        """
        settings = OutputSettings(
            json_output=self.settings.json_output,
            quiet=self.settings.quiet,
            verbose=self.settings.verbose,
        )
        output = format_result(result, settings=settings)
        if result.ok:
            click.echo(output)
            # In JSON mode, warnings are already in the serialized payload.
            if not settings.json_output:
                for warning in result.warnings:
                    click.echo(f"WARNING: {warning}", err=True)
        else:
            click.echo(output, err=True)
            raise SystemExit(1)
