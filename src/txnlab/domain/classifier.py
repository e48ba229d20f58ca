"""ConflictClassifier: map ledger errors to retry decisions.

INVARIANT: Anything not listed in ``_KIND_BY_ERROR`` classifies as
``Fatal(UNCLASSIFIED)``. Unknown failures are never retried.
"""

from __future__ import annotations

from txnlab.domain.errors import (
    AccountNotFound,
    DeadlockDetected,
    InsufficientFunds,
    SerializationFailure,
    StoreConnectionError,
)
from txnlab.domain.outcome import FailureKind, Fatal, Retryable

_KIND_BY_ERROR: dict[type[BaseException], FailureKind] = {
    DeadlockDetected: FailureKind.DEADLOCK_DETECTED,
    SerializationFailure: FailureKind.SERIALIZATION_FAILURE,
    InsufficientFunds: FailureKind.INSUFFICIENT_FUNDS,
    AccountNotFound: FailureKind.ACCOUNT_NOT_FOUND,
    StoreConnectionError: FailureKind.CONNECTION_ERROR,
}

RETRYABLE_KINDS = frozenset(
    {FailureKind.DEADLOCK_DETECTED, FailureKind.SERIALIZATION_FAILURE}
)


def kind_of(error: BaseException) -> FailureKind:
    """Return the failure kind for *error*, walking its MRO for subclasses."""
    for cls in type(error).__mro__:
        kind = _KIND_BY_ERROR.get(cls)
        if kind is not None:
            return kind
    return FailureKind.UNCLASSIFIED


def classify(error: BaseException) -> Retryable | Fatal:
    """Classify *error* as a transient conflict or a terminal failure.

    Examples:
        >>> classify(DeadlockDetected("cycle"))
        Retryable(kind=<FailureKind.DEADLOCK_DETECTED: 'deadlock_detected'>, reason='cycle')
        >>> classify(RuntimeError("boom")).kind
        <FailureKind.UNCLASSIFIED: 'unclassified'>
    """
    kind = kind_of(error)
    reason = str(error) or type(error).__name__
    if kind in RETRYABLE_KINDS:
        return Retryable(kind=kind, reason=reason)
    return Fatal(kind=kind, reason=reason)
