"""
Service dependencies for FastAPI.

Builds the ledger services per request on top of the request's database
session. Tests swap collaborators through `app.dependency_overrides`.
"""

from typing import Optional
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession
from backoffice.app.db.session import get_db
from backoffice.app.domain.ledger.cancellation import CancellationSource, InvoiceCancellationSource
from backoffice.app.domain.ledger.consistency import LedgerConsistencyService
from backoffice.app.domain.ledger.document_hooks import InvoiceLedgerHooks
from backoffice.app.domain.ledger.ledger_service import LedgerService
from backoffice.app.domain.ledger.projections import LedgerSummaryService


def get_cancellation_source() -> CancellationSource:
    """Source of cancelled document ids (invoice table by default)."""
    return InvoiceCancellationSource()


def get_actor(x_actor: Optional[str] = Header(None, max_length=100)) -> Optional[str]:
    """
    Name recorded in the audit log for the calling user or system.

    Authentication sits in front of this service; it forwards the
    authenticated username in the X-Actor header.
    """
    return x_actor


def get_ledger_service(
    db: AsyncSession = Depends(get_db),
    cancellations: CancellationSource = Depends(get_cancellation_source),
) -> LedgerService:
    return LedgerService(db, cancellations=cancellations)


def get_summary_service(
    db: AsyncSession = Depends(get_db),
    cancellations: CancellationSource = Depends(get_cancellation_source),
) -> LedgerSummaryService:
    return LedgerSummaryService(db, cancellations=cancellations)


def get_invoice_hooks(ledger: LedgerService = Depends(get_ledger_service)) -> InvoiceLedgerHooks:
    return InvoiceLedgerHooks(ledger)


def get_consistency_service(ledger: LedgerService = Depends(get_ledger_service)) -> LedgerConsistencyService:
    return LedgerConsistencyService(ledger)
