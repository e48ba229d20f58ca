"""Command: concurrent crisscross transfer experiment."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

import click

from txnlab.commands._base import TxnCommand
from txnlab.domain.types import IsolationLevel, LockOrder, to_money

if TYPE_CHECKING:
    from txnlab.commands._context import AppContext


@click.command(
    "run-experiment",
    cls=TxnCommand,
    examples=[
        ("txnlab run-experiment", "two actors, ascending lock order"),
        ("txnlab run-experiment --actors 4 --iterations 200", "more contention"),
        (
            "txnlab run-experiment --lock-order request --rendezvous --iterations 50",
            "provoke deadlocks",
        ),
        (
            "txnlab run-experiment --isolation serializable --max-attempts 6 --seed 7",
            "reproducible backoff",
        ),
        ("txnlab --json run-experiment --iterations 10", "machine-readable summary"),
    ],
)
@click.option("--actors", type=click.IntRange(min=1), default=None, help="Concurrent actors.")
@click.option(
    "--lock-order",
    type=click.Choice([o.value for o in LockOrder]),
    default=None,
    help="Row-lock acquisition policy.",
)
@click.option(
    "--isolation",
    type=click.Choice([i.value for i in IsolationLevel]),
    default=None,
    help="Isolation level of each transfer.",
)
@click.option(
    "--max-attempts", type=click.IntRange(min=1), default=None, help="Attempts per transfer."
)
@click.option(
    "--iterations", type=click.IntRange(min=0), default=None, help="Transfers per actor."
)
@click.option("--amount", type=str, default=None, help="Amount moved by each transfer.")
@click.option("--seed", type=int, default=None, help="Seed for retry backoff jitter.")
@click.option(
    "--lockstep/--no-lockstep",
    default=None,
    help="Start every iteration on all actors together.",
)
@click.option(
    "--rendezvous/--no-rendezvous",
    default=None,
    help="Line actors up after their first lock to provoke conflicts.",
)
@click.pass_obj
def run_experiment(
    app: AppContext,
    actors: int | None,
    lock_order: str | None,
    isolation: str | None,
    max_attempts: int | None,
    iterations: int | None,
    amount: str | None,
    seed: int | None,
    lockstep: bool | None,
    rendezvous: bool | None,
) -> None:
    """Run crisscross transfers on concurrent actors and report balances and retries."""
    svc = app.service()
    app.emit(
        svc.run_experiment(
            actors=actors,
            iterations=iterations,
            amount=_parse_amount(amount),
            lock_order=LockOrder(lock_order) if lock_order else None,
            isolation=IsolationLevel(isolation) if isolation else None,
            max_attempts=max_attempts,
            seed=seed,
            lockstep=lockstep,
            rendezvous=rendezvous,
        )
    )


def _parse_amount(value: str | None) -> Decimal | None:
    if value is None:
        return None
    try:
        return to_money(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--amount") from exc
