"""
Ledger API Endpoints.

Entry writes go through the balance engine; reads come from the summary
projections. Every write answers with the entry's recomputed balance.
"""

from fastapi import APIRouter, Depends, Path, Query, status
from datetime import date
from decimal import Decimal
from typing import List, Optional

from backoffice.app.core.dependencies import get_actor, get_ledger_service, get_summary_service
from backoffice.app.domain.ledger.ledger_service import LedgerService
from backoffice.app.domain.ledger.projections import LedgerSummaryService
from backoffice.app.models.ledger_enums import TransactionType
from backoffice.app.schemas.ledger import (
    CustomerSummary,
    DocumentEntryUpdate,
    LedgerEntryCreate,
    LedgerEntryResponse,
    LedgerEntryUpdate,
    LedgerFilters,
    LedgerSummary,
    PaginatedCustomerLedgers,
    PaginatedLedgerEntries,
)

router = APIRouter(prefix="/ledger", tags=["Ledger"])


# --- Entries ---

@router.post("/entries", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_ledger_entry(
    data: LedgerEntryCreate,
    ledger: LedgerService = Depends(get_ledger_service)
):
    """
    Post an entry at its chronological position.

    Backdated entries shift the balance of every later entry.
    """
    return await ledger.create_entry(data)


@router.get("/entries", response_model=PaginatedLedgerEntries)
async def list_ledger_entries(
    customer_id: Optional[int] = Query(None, description="Filter by customer"),
    transaction_type: Optional[TransactionType] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    min_amount: Optional[Decimal] = Query(None, ge=0),
    max_amount: Optional[Decimal] = Query(None, ge=0),
    search: Optional[str] = Query(None, max_length=100, description="Description, number, customer or reference"),
    include_excluded: bool = Query(False, description="Include entries of cancelled documents"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: Optional[int] = Query(None, ge=1, description="Items per page"),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Search entries across customers, newest first."""
    filters = LedgerFilters(
        customer_id=customer_id,
        transaction_type=transaction_type,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        max_amount=max_amount,
        search=search,
        include_excluded=include_excluded,
        page=page,
        limit=limit,
    )
    return await ledger.list_entries(filters)


@router.patch("/entries/{entry_id}", response_model=LedgerEntryResponse)
async def update_ledger_entry(
    data: LedgerEntryUpdate,
    entry_id: int = Path(..., description="Ledger entry ID"),
    actor: Optional[str] = Depends(get_actor),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Edit an entry; a date change moves it in the customer's history."""
    return await ledger.update_entry(entry_id, data, actor=actor)


@router.delete("/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ledger_entry(
    entry_id: int = Path(..., description="Ledger entry ID"),
    actor: Optional[str] = Depends(get_actor),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Delete an entry and take its amount back out of later balances."""
    await ledger.delete_entry(entry_id, actor=actor)


# --- Document locators ---

@router.patch("/documents/{transaction_type}/{transaction_id}", response_model=LedgerEntryResponse)
async def update_document_entry(
    data: DocumentEntryUpdate,
    transaction_type: TransactionType = Path(..., description="Source document type"),
    transaction_id: str = Path(..., description="Source document ID"),
    actor: Optional[str] = Depends(get_actor),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Mirror a source document change onto its ledger entry."""
    return await ledger.update_entry_for_document(
        transaction_type,
        transaction_id,
        data.amount,
        new_date=data.date,
        new_description=data.description,
        payment_method=data.payment_method,
        reference=data.reference,
        transaction_number=data.transaction_number,
        actor=actor,
    )


@router.delete("/documents/{transaction_type}/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document_entry(
    transaction_type: TransactionType = Path(..., description="Source document type"),
    transaction_id: str = Path(..., description="Source document ID"),
    transaction_number: Optional[str] = Query(None, description="Required when the document has several entries"),
    actor: Optional[str] = Depends(get_actor),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Delete the ledger entry of a source document."""
    await ledger.delete_entry_for_document(
        transaction_type, transaction_id, transaction_number=transaction_number, actor=actor
    )


# --- Customer ledgers ---

@router.get("/customers", response_model=PaginatedCustomerLedgers)
async def list_customer_ledgers(
    has_balance: bool = Query(False, description="Only customers with an outstanding balance"),
    search: Optional[str] = Query(None, max_length=100, description="Name, company or email"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: Optional[int] = Query(None, ge=1, description="Items per page"),
    summaries: LedgerSummaryService = Depends(get_summary_service)
):
    """Customers ranked by outstanding balance."""
    return await summaries.list_customer_ledgers(has_balance=has_balance, search=search, page=page, limit=limit)


@router.get("/customers/{customer_id}/entries", response_model=List[LedgerEntryResponse])
async def list_customer_entries(
    customer_id: int = Path(..., description="Customer ID"),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """A customer's eligible entries, newest first."""
    return await ledger.list_customer_entries(customer_id)


@router.get("/customers/{customer_id}/summary", response_model=CustomerSummary)
async def get_customer_summary(
    customer_id: int = Path(..., description="Customer ID"),
    summaries: LedgerSummaryService = Depends(get_summary_service)
):
    return await summaries.get_customer_summary(customer_id)


@router.get("/summary", response_model=LedgerSummary)
async def get_ledger_summary(
    summaries: LedgerSummaryService = Depends(get_summary_service)
):
    """Dashboard totals across all customers."""
    return await summaries.get_global_summary()
