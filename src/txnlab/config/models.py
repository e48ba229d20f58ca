"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults live here, ``txnlab.toml`` only holds
overrides. An empty file (or none at all) runs the classic two-account
lab: alice and bob with 1000 each, in memory.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from txnlab.domain.types import IsolationLevel, LockOrder, to_money


class LedgerConfig(BaseModel):
    """[ledger] section."""

    model_config = {"frozen": True}

    backend: Literal["memory", "sql"] = "memory"
    database_url: str | None = None
    accounts: list[str] = Field(default_factory=lambda: ["alice", "bob"])
    starting_balance: Decimal = Decimal("1000")

    @field_validator("accounts")
    @classmethod
    def _unique_accounts(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            msg = "account ids must be unique"
            raise ValueError(msg)
        if len(value) < 2:
            msg = "at least two accounts are required"
            raise ValueError(msg)
        return value

    @field_validator("starting_balance")
    @classmethod
    def _non_negative(cls, value: Decimal) -> Decimal:
        if value < 0:
            msg = "starting_balance must be non-negative"
            raise ValueError(msg)
        return to_money(value)


class RetryConfig(BaseModel):
    """[retry] section.

    The default budget is one attempt plus three retries.
    """

    model_config = {"frozen": True}

    max_attempts: int = Field(default=4, ge=1)
    base_delay: float = Field(default=0.05, ge=0)
    seed: int | None = None


class ExperimentConfig(BaseModel):
    """[experiment] section."""

    model_config = {"frozen": True}

    actors: int = Field(default=2, ge=1)
    iterations: int = Field(default=1000, ge=0)
    amount: Decimal = Field(default=Decimal("100"), gt=0)
    lock_order: LockOrder = LockOrder.ASCENDING
    isolation: IsolationLevel = IsolationLevel.READ_COMMITTED
    lockstep: bool = True
    rendezvous: bool = False
    rendezvous_timeout: float = Field(default=0.05, gt=0)

    @field_validator("amount")
    @classmethod
    def _whole_cents(cls, value: Decimal) -> Decimal:
        return to_money(value)


class TxnLabConfig(BaseModel):
    """Root configuration composing all sections."""

    model_config = {"frozen": True}

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    experiment: ExperimentConfig = Field(default_factory=ExperimentConfig)
