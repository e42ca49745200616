"""
Cancellation filter.

Entries of type invoice/payment whose source document is cancelled stay in
the store for audit but take no part in balance math. The cancelled set is
looked up on every call; it changes whenever an invoice is voided.
"""

import logging
from typing import Iterable, Optional, Protocol

from sqlalchemy import and_, not_, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.exceptions import CancellationLookupError
from backoffice.app.models.invoice import Invoice
from backoffice.app.models.ledger_entry import LedgerEntry
from backoffice.app.models.ledger_enums import CANCELLABLE_TYPES, InvoiceStatus

logger = logging.getLogger("backoffice.ledger")


class CancellationSource(Protocol):
    """Answers "which source documents are cancelled right now"."""

    async def cancelled_document_ids(
        self, db: AsyncSession, customer_id: Optional[int] = None
    ) -> set[str]:
        ...


class InvoiceCancellationSource:
    """Reads cancelled invoice ids from the invoices table."""

    async def cancelled_document_ids(
        self, db: AsyncSession, customer_id: Optional[int] = None
    ) -> set[str]:
        query = select(Invoice.id).where(Invoice.status == InvoiceStatus.CANCELLED)
        if customer_id is not None:
            query = query.where(Invoice.customer_id == customer_id)
        result = await db.execute(query)
        return set(result.scalars().all())


class StaticCancellationSource:
    """Fixed cancelled set, for simulations and tests."""

    def __init__(self, cancelled: Iterable[str] = ()):
        self.cancelled = set(cancelled)

    async def cancelled_document_ids(
        self, db: AsyncSession, customer_id: Optional[int] = None
    ) -> set[str]:
        return set(self.cancelled)


async def load_cancelled_ids(
    source: CancellationSource,
    db: AsyncSession,
    customer_id: Optional[int] = None,
) -> set[str]:
    """
    Resolve the cancelled-document set or fail the calling operation.

    Treating a failed lookup as "nothing cancelled" would fold voided
    invoices back into every later balance, so any error is surfaced.
    """
    try:
        return set(await source.cancelled_document_ids(db, customer_id))
    except CancellationLookupError:
        raise
    except Exception as exc:
        logger.error("Cancelled-document lookup failed for customer %s: %s", customer_id, exc)
        raise CancellationLookupError() from exc


def eligibility_clause(cancelled_ids: set[str]):
    """SQL predicate selecting entries that count towards balances."""
    if not cancelled_ids:
        return true()
    return not_(
        and_(
            LedgerEntry.transaction_type.in_(CANCELLABLE_TYPES),
            LedgerEntry.transaction_id.isnot(None),
            LedgerEntry.transaction_id.in_(cancelled_ids),
        )
    )


def is_eligible(entry: LedgerEntry, cancelled_ids: set[str]) -> bool:
    """Python-side twin of `eligibility_clause` for already loaded entries."""
    if entry.transaction_type not in CANCELLABLE_TYPES:
        return True
    return entry.transaction_id is None or entry.transaction_id not in cancelled_ids
