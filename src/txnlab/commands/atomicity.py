"""Command: all-or-nothing transfer demonstration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from txnlab.commands._base import TxnCommand

if TYPE_CHECKING:
    from txnlab.commands._context import AppContext


@click.command(
    "atomicity-demo",
    cls=TxnCommand,
    examples=[
        ("txnlab atomicity-demo", "crash after the debit; nothing changes"),
        ("txnlab atomicity-demo --no-fail", "the whole transfer commits"),
    ],
)
@click.option(
    "--fail/--no-fail",
    default=True,
    help="Crash after the debit (rolled back) or let the transfer commit.",
)
@click.pass_obj
def atomicity_demo(app: AppContext, fail: bool) -> None:
    """Debit one account and crash before the credit; nothing is applied."""
    app.emit(app.service().atomicity_demo(fail=fail))
