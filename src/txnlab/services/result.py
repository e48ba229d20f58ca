"""ServiceResult and ServiceError: the contract between services and the CLI.

INVARIANT: Every public ExperimentService method returns ServiceResult.
Terminal Fatal outcomes surface as ``ok=False`` with the failure kind as
the error code, so "invalid transfer" and "no progress under contention"
stay distinguishable to callers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from txnlab.domain.outcome import Fatal

if TYPE_CHECKING:
    from txnlab.domain.outcome import FinalResult


class ServiceError(BaseModel):
    """Structured error payload within a ServiceResult."""

    model_config = {"frozen": True}

    code: str
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_fatal(cls, result: FinalResult, **detail: Any) -> ServiceError:
        """Describe a terminal failure: its kind is the code.

        The detail records how many attempts were made and, after retries
        ran out, which conflict was seen last.
        """
        outcome = result.outcome
        if not isinstance(outcome, Fatal):
            msg = f"expected a Fatal outcome, got {type(outcome).__name__}"
            raise TypeError(msg)
        extra: dict[str, Any] = {"attempts": result.attempts, **detail}
        if outcome.last_retryable is not None:
            extra["last_conflict"] = str(outcome.last_retryable.kind)
        return cls(code=str(outcome.kind), message=outcome.reason, detail=extra)


class ServiceResult(BaseModel):
    """Return type for service operations exposed to the CLI.

    Attributes:
        ok: Whether the operation succeeded.
        op: Name of the operation (e.g. ``"run_experiment"``).
        data: Operation-specific payload (JSON-safe: balances as strings).
        warnings: Non-fatal issues encountered during the operation.
        error: Structured error if ``ok`` is False.
        meta: Optional metadata (timing, telemetry).
    """

    model_config = {"frozen": True}

    ok: bool
    op: str
    data: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error: ServiceError | None = None
    meta: dict[str, Any] | None = None

    @classmethod
    def failure(
        cls,
        op: str,
        error: ServiceError | str,
        message: str = "",
        *,
        warnings: list[str] | None = None,
        **detail: Any,
    ) -> ServiceResult:
        """Shorthand for ``ok=False``; *error* is a ServiceError or a code."""
        if isinstance(error, str):
            error = ServiceError(code=error, message=message, detail=detail)
        return cls(ok=False, op=op, error=error, warnings=warnings or [])
