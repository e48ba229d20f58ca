"""BaseService: foundation for services that work against a Ledger.

Every service receives the shared :class:`Ledger` at construction time
and owns its transaction boundaries via ``self._ledger.transaction()``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from txnlab.infrastructure.ledger import Ledger


class BaseService:
    """Base for service-layer classes.

    Usage::

        class AuditService(BaseService):
            def total(self) -> Decimal:
                return self._ledger.total()
    """

    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def ledger(self) -> Ledger:
        return self._ledger
