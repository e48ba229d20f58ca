"""Commands: single transfers and ledger inspection."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from txnlab.commands._base import TxnCommand

if TYPE_CHECKING:
    from txnlab.commands._context import AppContext


@click.command(
    cls=TxnCommand,
    examples=[
        ("txnlab transfer alice bob 100", ""),
        ("txnlab --json transfer bob alice 25.50", "amounts are exact decimals"),
    ],
)
@click.argument("from_id")
@click.argument("to_id")
@click.argument("amount")
@click.pass_obj
def transfer(app: AppContext, from_id: str, to_id: str, amount: str) -> None:
    """Move AMOUNT from FROM_ID to TO_ID in one transaction."""
    app.emit(app.service().transfer(from_id, to_id, amount))


@click.command(
    cls=TxnCommand,
    examples=[("txnlab balances", ""), ("txnlab --json balances", "")],
)
@click.pass_obj
def balances(app: AppContext) -> None:
    """Show every account's committed balance."""
    app.emit(app.service().balances())


@click.command(
    cls=TxnCommand,
    examples=[("txnlab reset", "back to the configured starting balance")],
)
@click.pass_obj
def reset(app: AppContext) -> None:
    """Reset the configured accounts to the starting balance."""
    app.emit(app.service().reset())
