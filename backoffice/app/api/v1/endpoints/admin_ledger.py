"""
Admin Ledger API Endpoints.

Consistency audit and balance repair.
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional

from backoffice.app.core.dependencies import get_actor, get_consistency_service
from backoffice.app.domain.ledger.consistency import LedgerConsistencyService
from backoffice.app.schemas.ledger import ConsistencyReport, RecalculationResult

router = APIRouter(prefix="/admin/ledger", tags=["Admin - Ledger"])


@router.get("/consistency", response_model=ConsistencyReport)
async def verify_ledger_consistency(
    consistency: LedgerConsistencyService = Depends(get_consistency_service)
):
    """
    Report integrity violations across the whole ledger.

    Entries of cancelled documents are listed for audit but do not make the
    ledger inconsistent.
    """
    return await consistency.verify_consistency()


@router.post("/recalculate", response_model=RecalculationResult)
async def recalculate_ledger_balances(
    customer_id: Optional[int] = Query(None, description="Limit to one customer"),
    renumber_payments: bool = Query(False, description="Also renumber duplicated payment entries"),
    actor: Optional[str] = Depends(get_actor),
    consistency: LedgerConsistencyService = Depends(get_consistency_service)
):
    """Rebuild cached balances from scratch."""
    renumbered = 0
    if renumber_payments:
        renumbered = await consistency.renumber_payment_entries(actor=actor)

    result = await consistency.recalculate_balances(customer_id=customer_id, actor=actor)
    result.payments_renumbered = renumbered
    return result
