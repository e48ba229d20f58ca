"""Command: read-modify-write under each isolation level."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from txnlab.commands._base import TxnCommand
from txnlab.domain.types import IsolationLevel

if TYPE_CHECKING:
    from txnlab.commands._context import AppContext


@click.command(
    "isolation-demo",
    cls=TxnCommand,
    examples=[
        ("txnlab isolation-demo", "every level side by side"),
        ("txnlab isolation-demo --level repeatable_read", "snapshot read, then retry"),
        ("txnlab isolation-demo --level read_committed --level serializable", ""),
    ],
)
@click.option(
    "--level",
    "levels",
    multiple=True,
    type=click.Choice([i.value for i in IsolationLevel]),
    help="Isolation level to demonstrate (repeatable; default: all).",
)
@click.option("--account", default=None, help="Account to deposit into.")
@click.pass_obj
def isolation_demo(app: AppContext, levels: tuple[str, ...], account: str | None) -> None:
    """Show what a concurrent deposit does to reads and writes at each level."""
    svc = app.service()
    chosen = [IsolationLevel(level) for level in levels] or None
    app.emit(svc.isolation_demo(chosen, account_id=account))
