"""ExperimentService: the lab's operations as ServiceResult-returning calls.

Each public method composes the lower layers (TransferExecutor,
IsolationRunner, ConcurrencyHarness) against the shared Ledger and
reports JSON-safe data: balances are rendered as strings so Decimal
precision survives ``--json``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog

from txnlab.config.models import RetryConfig, TxnLabConfig
from txnlab.domain.outcome import Committed
from txnlab.domain.types import IsolationLevel, LockOrder, to_money
from txnlab.infrastructure.database import SqlStore
from txnlab.services.base import BaseService
from txnlab.services.harness import ConcurrencyHarness, Rendezvous, crisscross
from txnlab.services.isolation import IsolationRunner, TxnScope, concurrent_deposit
from txnlab.services.result import ServiceError, ServiceResult
from txnlab.services.retry import RetryPolicy
from txnlab.services.telemetry import get_current_span, trace_span, traced
from txnlab.services.transfer import TransferExecutor

if TYPE_CHECKING:
    from txnlab.infrastructure.ledger import Ledger

log = structlog.get_logger(__name__)

ISOLATION_DEMO_DEPOSIT = Decimal("50")
ISOLATION_DEMO_WRITE = Decimal("100")


class SimulatedCrash(RuntimeError):
    """Raised by the atomicity demo between the debit and the commit."""


def _money(balances: Mapping[str, Decimal]) -> dict[str, str]:
    return {account_id: str(balance) for account_id, balance in balances.items()}


class ExperimentService(BaseService):
    """Runs transfers, contention experiments and isolation demos."""

    def __init__(self, ledger: Ledger, config: TxnLabConfig | None = None) -> None:
        super().__init__(ledger)
        self._config = config or TxnLabConfig()

    @property
    def config(self) -> TxnLabConfig:
        return self._config

    # ------------------------------------------------------------------
    # Ledger administration
    # ------------------------------------------------------------------

    def _starting_balances(self) -> dict[str, Decimal]:
        ledger_cfg = self._config.ledger
        return {account_id: ledger_cfg.starting_balance for account_id in ledger_cfg.accounts}

    @traced
    def balances(self) -> ServiceResult:
        """Committed balance of every account, plus the ledger total."""
        return ServiceResult(
            ok=True,
            op="balances",
            data={
                "balances": _money(self._ledger.balances()),
                "total": str(self._ledger.total()),
            },
        )

    @traced
    def reset(self) -> ServiceResult:
        """Put every configured account back to the starting balance."""
        self._ledger.reset(self._starting_balances())
        return ServiceResult(
            ok=True,
            op="reset",
            data={
                "balances": _money(self._ledger.balances()),
                "total": str(self._ledger.total()),
            },
        )

    # ------------------------------------------------------------------
    # Single transfer
    # ------------------------------------------------------------------

    @traced
    def transfer(
        self,
        from_id: str,
        to_id: str,
        amount: Decimal | int | str,
        *,
        lock_order: LockOrder | None = None,
        isolation: IsolationLevel | None = None,
        max_attempts: int | None = None,
    ) -> ServiceResult:
        """Move *amount* between two accounts under the configured retry policy."""
        experiment = self._config.experiment
        retry_cfg = self._retry_config(max_attempts=max_attempts)
        executor = TransferExecutor(
            self._ledger,
            lock_order=lock_order or experiment.lock_order,
            isolation=isolation or experiment.isolation,
            retry=RetryPolicy.from_config(retry_cfg),
        )
        try:
            result = executor.transfer(from_id, to_id, amount)
        except ValueError as exc:
            return ServiceResult.failure("transfer", "invalid_transfer", str(exc))

        if not result.ok:
            error = ServiceError.from_fatal(
                result, from_id=from_id, to_id=to_id, amount=str(amount)
            )
            return ServiceResult.failure("transfer", error)

        outcome = result.outcome
        assert isinstance(outcome, Committed)
        return ServiceResult(
            ok=True,
            op="transfer",
            data={
                "from_id": from_id,
                "to_id": to_id,
                "amount": str(to_money(amount)),
                "attempts": result.attempts,
                "retries": dict(result.retry_counts()),
                "balances": _money(outcome.new_balances),
            },
        )

    # ------------------------------------------------------------------
    # Concurrency experiment
    # ------------------------------------------------------------------

    @traced
    def run_experiment(
        self,
        *,
        actors: int | None = None,
        iterations: int | None = None,
        amount: Decimal | int | str | None = None,
        lock_order: LockOrder | None = None,
        isolation: IsolationLevel | None = None,
        max_attempts: int | None = None,
        seed: int | None = None,
        lockstep: bool | None = None,
        rendezvous: bool | None = None,
    ) -> ServiceResult:
        """Reset the ledger and run crisscross transfers on concurrent actors.

        Unset arguments fall back to the ``[experiment]`` and ``[retry]``
        config. The result is ``ok`` as long as money was conserved and no
        balance went negative; fatal transfer outcomes are reported in the
        data and as warnings.
        """
        cfg = self._config.experiment
        actor_count = cfg.actors if actors is None else actors
        iteration_count = cfg.iterations if iterations is None else iterations
        order = lock_order or cfg.lock_order
        level = isolation or cfg.isolation
        use_lockstep = cfg.lockstep if lockstep is None else lockstep
        use_rendezvous = cfg.rendezvous if rendezvous is None else rendezvous
        retry_cfg = self._retry_config(max_attempts=max_attempts, seed=seed)

        try:
            value = to_money(cfg.amount if amount is None else amount)
            self._validate_run(actor_count, iteration_count, value)
        except ValueError as exc:
            return ServiceResult.failure("run_experiment", "invalid_experiment", str(exc))

        with trace_span("reset"):
            self._ledger.reset(self._starting_balances())
            total_before = self._ledger.total()

        barrier = (
            Rendezvous(actor_count, timeout=cfg.rendezvous_timeout)
            if use_rendezvous and actor_count > 1
            else None
        )
        executors = [
            TransferExecutor(
                self._ledger,
                lock_order=order,
                isolation=level,
                retry=RetryPolicy.from_config(retry_cfg, seed_offset=index),
                on_first_lock=barrier,
            )
            for index in range(actor_count)
        ]
        operation = crisscross(executors, self._config.ledger.accounts, value)

        with trace_span("harness") as span:
            report = ConcurrencyHarness(self._ledger).run(
                actor_count,
                operation,
                iterations=iteration_count,
                lockstep=use_lockstep,
                on_actor_done=barrier.close if barrier is not None else None,
            )
            if span is not None:
                span.annotate("attempts", report.attempts)

        total_after = report.total
        conserved = total_after == total_before
        negative = sorted(k for k, v in report.balances.items() if v < 0)

        warnings: list[str] = []
        for kind, count in sorted(report.fatal.items()):
            warnings.append(f"{count} transfer(s) ended fatally: {kind}")

        data: dict[str, Any] = {
            "actors": [actor.to_dict() for actor in report.actors],
            "iterations": iteration_count,
            "amount": str(value),
            "lock_order": str(order),
            "isolation": str(level),
            "max_attempts": retry_cfg.max_attempts,
            "lockstep": use_lockstep,
            "balances": _money(report.balances),
            "total_before": str(total_before),
            "total_after": str(total_after),
            "conserved": conserved,
            "attempts": report.attempts,
            "committed": report.committed,
            "retries": dict(report.retries),
            "fatal": dict(report.fatal),
            "elapsed_ms": round(report.elapsed_ms, 2),
        }
        if barrier is not None:
            data["rendezvous"] = {"met": barrier.met, "missed": barrier.missed}

        current = get_current_span()
        if current is not None:
            current.annotate("committed", report.committed)

        if not conserved or negative:
            message = (
                f"total changed from {total_before} to {total_after}"
                if not conserved
                else f"negative balance on {', '.join(negative)}"
            )
            log.error("experiment.invariant_violated", message=message)
            error = ServiceError(code="invariant_violated", message=message, detail=data)
            return ServiceResult.failure("run_experiment", error, warnings=warnings)

        return ServiceResult(ok=True, op="run_experiment", data=data, warnings=warnings)

    def _validate_run(self, actors: int, iterations: int, amount: Decimal) -> None:
        if actors < 1:
            msg = f"actors must be at least 1, got {actors}"
            raise ValueError(msg)
        if iterations < 0:
            msg = f"iterations must be non-negative, got {iterations}"
            raise ValueError(msg)
        if amount <= 0:
            msg = f"amount must be positive, got {amount}"
            raise ValueError(msg)

    def _retry_config(
        self, *, max_attempts: int | None = None, seed: int | None = None
    ) -> RetryConfig:
        base = self._config.retry
        updates: dict[str, Any] = {}
        if max_attempts is not None:
            updates["max_attempts"] = max_attempts
        if seed is not None:
            updates["seed"] = seed
        return base.model_copy(update=updates) if updates else base

    # ------------------------------------------------------------------
    # Demos
    # ------------------------------------------------------------------

    @traced
    def isolation_demo(
        self,
        levels: Iterable[IsolationLevel] | None = None,
        *,
        account_id: str | None = None,
    ) -> ServiceResult:
        """Read, let a concurrent deposit commit, re-read, then write.

        Under read committed the second read sees the deposit; under the
        snapshot levels it does not, and the final write conflicts with
        the deposit and is retried. Every level ends with both amounts
        applied.

        SQLite serializes writers, so the deposit could not commit while
        the demo transaction is open; that backend is reported as
        ``unsupported_backend``.
        """
        store = self._ledger.store
        if isinstance(store, SqlStore) and store.dialect == "sqlite":
            return ServiceResult.failure(
                "isolation_demo",
                "unsupported_backend",
                "SQLite allows one writer at a time; run the isolation demo "
                "on the memory or PostgreSQL backend",
                backend=store.dialect,
            )
        target = account_id or self._config.ledger.accounts[0]
        chosen = list(levels) if levels is not None else list(IsolationLevel)
        # A snapshot level needs a second attempt to apply its write.
        retry_cfg = self._retry_config(max_attempts=max(2, self._config.retry.max_attempts))
        runner = IsolationRunner(self._ledger, retry=RetryPolicy.from_config(retry_cfg))

        rows: list[dict[str, Any]] = []
        for level in chosen:
            with trace_span(f"isolation.{level}"):
                self._ledger.reset(self._starting_balances())
                reads: dict[int, tuple[Decimal, Decimal | None]] = {}

                def body(scope: TxnScope) -> Decimal:
                    first = scope.read(target)
                    reads[scope.attempt] = (first, None)
                    if scope.attempt == 1:
                        concurrent_deposit(self._ledger, target, ISOLATION_DEMO_DEPOSIT)
                    second = scope.read(target)
                    reads[scope.attempt] = (first, second)
                    return scope.deposit(target, ISOLATION_DEMO_WRITE)

                result = runner.run(level, body)
                first_read, second_read = reads.get(1, (None, None))
                rows.append(
                    {
                        "isolation": str(level),
                        "first_read": str(first_read) if first_read is not None else None,
                        "second_read": str(second_read) if second_read is not None else None,
                        "attempts": result.attempts,
                        "retries": dict(result.retry_counts()),
                        "outcome": "committed" if result.ok else str(result.fatal_kind),
                        "final_balance": str(self._ledger.get(target).balance),
                    }
                )

        return ServiceResult(
            ok=True,
            op="isolation_demo",
            data={"account_id": target, "levels": rows},
        )

    @traced
    def atomicity_demo(
        self,
        *,
        fail: bool = True,
        amount: Decimal | int | str | None = None,
    ) -> ServiceResult:
        """Debit one account, then crash (or commit) before the credit lands.

        With *fail* the transaction is rolled back and both balances are
        unchanged; without it the transfer commits as a whole.
        """
        from_id, to_id = self._config.ledger.accounts[:2]
        value = to_money(self._config.experiment.amount if amount is None else amount)
        self._ledger.reset(self._starting_balances())
        before = self._ledger.balances()

        committed = False
        try:
            with self._ledger.transaction() as txn:
                balances = txn.lock_and_read(sorted((from_id, to_id)))
                txn.write(from_id, balances[from_id] - value)
                if fail:
                    raise SimulatedCrash(f"crashed after debiting {from_id}")
                txn.write(to_id, balances[to_id] + value)
                txn.commit()
                committed = True
        except SimulatedCrash as exc:
            log.info("atomicity.rolled_back", reason=str(exc))

        after = self._ledger.balances()
        return ServiceResult(
            ok=True,
            op="atomicity_demo",
            data={
                "failed": fail,
                "committed": committed,
                "amount": str(value),
                "before": _money(before),
                "balances": _money(after),
                "total": str(self._ledger.total()),
            },
        )
