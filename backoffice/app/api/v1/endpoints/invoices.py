"""
Invoice API Endpoints.

Document lifecycle actions of the invoicing collaborator. Each action keeps
the invoice and the customer ledger in step within one transaction.
"""

from fastapi import APIRouter, Depends, Path, status
from typing import Optional

from backoffice.app.core.dependencies import get_actor, get_invoice_hooks
from backoffice.app.domain.ledger.document_hooks import InvoiceLedgerHooks
from backoffice.app.schemas.invoice import (
    InvoiceAmountUpdate,
    InvoiceCancel,
    InvoiceCreate,
    InvoiceResponse,
    PaymentCreate,
    PaymentUpdate,
)
from backoffice.app.schemas.ledger import LedgerEntryResponse

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def issue_invoice(
    data: InvoiceCreate,
    actor: Optional[str] = Depends(get_actor),
    hooks: InvoiceLedgerHooks = Depends(get_invoice_hooks)
):
    """Issue an invoice and debit its total to the customer."""
    return await hooks.invoice_issued(data, actor=actor)


@router.patch("/{invoice_id}", response_model=InvoiceResponse)
async def change_invoice_amount(
    data: InvoiceAmountUpdate,
    invoice_id: str = Path(..., description="Invoice ID"),
    actor: Optional[str] = Depends(get_actor),
    hooks: InvoiceLedgerHooks = Depends(get_invoice_hooks)
):
    return await hooks.invoice_amount_changed(invoice_id, data.total_amount, new_date=data.date, actor=actor)


@router.post("/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(
    data: Optional[InvoiceCancel] = None,
    invoice_id: str = Path(..., description="Invoice ID"),
    actor: Optional[str] = Depends(get_actor),
    hooks: InvoiceLedgerHooks = Depends(get_invoice_hooks)
):
    """
    Cancel an unpaid invoice.

    Its ledger entry is kept for audit and stops counting towards balances.
    """
    reason = data.reason if data else None
    return await hooks.invoice_cancelled(invoice_id, reason=reason, actor=actor)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(
    invoice_id: str = Path(..., description="Invoice ID"),
    actor: Optional[str] = Depends(get_actor),
    hooks: InvoiceLedgerHooks = Depends(get_invoice_hooks)
):
    """Delete a draft or unpaid invoice."""
    await hooks.invoice_deleted(invoice_id, actor=actor)


@router.post("/{invoice_id}/payments", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def record_payment(
    data: PaymentCreate,
    invoice_id: str = Path(..., description="Invoice ID"),
    actor: Optional[str] = Depends(get_actor),
    hooks: InvoiceLedgerHooks = Depends(get_invoice_hooks)
):
    """Record a payment; it may not exceed the outstanding amount."""
    return await hooks.payment_recorded(invoice_id, data, actor=actor)


@router.patch("/{invoice_id}/payments/{transaction_number}", response_model=LedgerEntryResponse)
async def update_payment(
    data: PaymentUpdate,
    invoice_id: str = Path(..., description="Invoice ID"),
    transaction_number: str = Path(..., description="Payment transaction number"),
    actor: Optional[str] = Depends(get_actor),
    hooks: InvoiceLedgerHooks = Depends(get_invoice_hooks)
):
    return await hooks.payment_updated(invoice_id, transaction_number, data, actor=actor)


@router.delete("/{invoice_id}/payments/{transaction_number}", response_model=InvoiceResponse)
async def remove_payment(
    invoice_id: str = Path(..., description="Invoice ID"),
    transaction_number: str = Path(..., description="Payment transaction number"),
    actor: Optional[str] = Depends(get_actor),
    hooks: InvoiceLedgerHooks = Depends(get_invoice_hooks)
):
    """Remove a payment and return the updated invoice."""
    return await hooks.payment_removed(invoice_id, transaction_number, actor=actor)
