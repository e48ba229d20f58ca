"""Subcommand modules for txnlab.

Provides register_commands() which uses deferred imports to keep
``txnlab --help`` fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register every standalone command on the root CLI group."""
    # --- Experiments ---
    from txnlab.commands.atomicity import atomicity_demo
    from txnlab.commands.experiment import run_experiment
    from txnlab.commands.isolation import isolation_demo

    cli.add_command(run_experiment)
    cli.add_command(isolation_demo)
    cli.add_command(atomicity_demo)

    # --- Ledger ---
    from txnlab.commands.ledger import balances, reset, transfer

    cli.add_command(transfer)
    cli.add_command(balances)
    cli.add_command(reset)
