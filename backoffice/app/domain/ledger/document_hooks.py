"""
Invoice Ledger Hooks.

Adapter through which the invoicing collaborator drives the ledger. Each
hook changes the invoice and its ledger entries inside one ledger mutation,
so the document and the balances never disagree after a commit.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select

from backoffice.app.core.config import settings
from backoffice.app.core.exceptions import DocumentStateError, InvalidAmountError, ResourceNotFoundError
from backoffice.app.domain.ledger.ledger_service import LedgerService, document_changes
from backoffice.app.domain.ledger.ordering import CANONICAL_ORDER, parse_amount, to_money
from backoffice.app.models.invoice import Invoice
from backoffice.app.models.ledger_entry import LedgerEntry
from backoffice.app.models.ledger_enums import InvoiceStatus, TransactionType
from backoffice.app.schemas.invoice import InvoiceCreate, PaymentCreate, PaymentUpdate
from backoffice.app.schemas.ledger import LedgerEntryCreate
from backoffice.app.services.audit import AuditAction, log_event

logger = logging.getLogger("backoffice.ledger.documents")

# Invoices in these states can be deleted outright instead of cancelled
DELETABLE_STATUSES = (InvoiceStatus.DRAFT, InvoiceStatus.PENDING)


def derive_status(invoice: Invoice) -> InvoiceStatus:
    """Payment-driven status of an issued invoice."""
    total = to_money(invoice.total_amount)
    paid = to_money(invoice.paid_amount)
    if total - paid <= 0:
        return InvoiceStatus.PAID
    if paid > 0:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.PENDING


def payment_number(invoice: Invoice, sequence: int, prefix: Optional[str] = None) -> str:
    """PAY-<last 6 chars of the invoice id>-<sequence>"""
    prefix = prefix or settings.ledger_payment_prefix
    return f"{prefix}-{invoice.id[-6:].upper()}-{sequence}"


class InvoiceLedgerHooks:

    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.db = ledger.db

    async def _get_invoice(self, invoice_id: str) -> Invoice:
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise ResourceNotFoundError("Invoice", invoice_id)
        return invoice

    async def _document_entries(self, transaction_type: TransactionType, invoice_id: str) -> list[LedgerEntry]:
        result = await self.db.execute(
            select(LedgerEntry)
            .where(
                LedgerEntry.transaction_type == transaction_type,
                LedgerEntry.transaction_id == invoice_id,
            )
            .order_by(*CANONICAL_ORDER)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def invoice_issued(self, data: InvoiceCreate, actor: Optional[str] = None) -> Invoice:
        """Persist a new invoice and debit its total to the customer."""
        total = parse_amount(data.total_amount, "total_amount")
        if total <= 0:
            raise InvalidAmountError("Invoice total must be greater than 0", details={"total_amount": str(total)})

        async with self.ledger.mutation(data.customer_id, "invoice_issued") as customer:
            clash = await self.db.execute(
                select(Invoice.id).where(Invoice.invoice_number == data.invoice_number)
            )
            if clash.first():
                raise DocumentStateError(
                    f"Invoice number {data.invoice_number} already exists",
                    details={"invoice_number": data.invoice_number},
                )

            invoice = Invoice(
                id=data.id or uuid.uuid4().hex,
                invoice_number=data.invoice_number,
                customer_id=customer.id,
                date=data.date,
                due_date=data.due_date,
                total_amount=total,
                paid_amount=Decimal("0.00"),
                payment_count=0,
                status=InvoiceStatus.PENDING,
                notes=data.notes,
                created_by=actor,
            )
            self.db.add(invoice)
            await self.db.flush()

            entry = await self.ledger.post_entry(
                LedgerEntryCreate(
                    customer_id=customer.id,
                    transaction_type=TransactionType.INVOICE,
                    transaction_id=invoice.id,
                    transaction_number=invoice.invoice_number,
                    date=invoice.date,
                    description=f"Invoice {invoice.invoice_number}",
                    debit=total,
                    created_by=actor or "system",
                ),
                customer,
            )
            await log_event(
                self.db,
                AuditAction.INVOICE_ISSUED,
                actor_username=actor,
                customer_id=customer.id,
                entity_id=invoice.id,
                metadata={"invoice_number": invoice.invoice_number, "total": str(total), "entry_id": entry.id},
            )
        logger.info("Issued invoice %s for customer %s", invoice.invoice_number, invoice.customer_id)
        return invoice

    async def invoice_amount_changed(
        self,
        invoice_id: str,
        new_total: Decimal,
        new_date: Optional[date] = None,
        actor: Optional[str] = None,
    ) -> Invoice:
        """Reprice an invoice; the total may not drop below what is already paid."""
        total = parse_amount(new_total, "total_amount")
        located = await self._get_invoice(invoice_id)

        async with self.ledger.mutation(located.customer_id, "invoice_amount_changed"):
            invoice = await self._get_invoice(invoice_id)
            if invoice.status == InvoiceStatus.CANCELLED:
                raise DocumentStateError("Cannot change a cancelled invoice", details={"invoice_id": invoice_id})

            paid = to_money(invoice.paid_amount)
            if total <= 0 or total < paid:
                raise InvalidAmountError(
                    "Invoice total must be positive and not below the amount already paid",
                    details={"total_amount": str(total), "paid_amount": str(paid)},
                )

            old_total = to_money(invoice.total_amount)
            invoice.total_amount = total
            if new_date is not None:
                invoice.date = new_date
            if invoice.status != InvoiceStatus.DRAFT:
                invoice.status = derive_status(invoice)

            entry = await self.ledger.find_document_entry(TransactionType.INVOICE, invoice.id)
            await self.ledger.revise_entry(entry, document_changes(entry, total, new_date=new_date), actor=actor)

            await log_event(
                self.db,
                AuditAction.INVOICE_AMOUNT_CHANGED,
                actor_username=actor,
                customer_id=invoice.customer_id,
                entity_id=invoice.id,
                metadata={"old_total": str(old_total), "new_total": str(total)},
            )
        return invoice

    async def invoice_cancelled(self, invoice_id: str, reason: Optional[str] = None, actor: Optional[str] = None) -> Invoice:
        """
        Void an unpaid invoice.

        Its entries stay in the ledger for audit; the customer's balances are
        rebuilt because the set of eligible entries changed.
        """
        located = await self._get_invoice(invoice_id)

        async with self.ledger.mutation(located.customer_id, "invoice_cancelled"):
            invoice = await self._get_invoice(invoice_id)
            if invoice.status == InvoiceStatus.CANCELLED:
                raise DocumentStateError("Invoice is already cancelled", details={"invoice_id": invoice_id})
            if to_money(invoice.paid_amount) > 0:
                raise DocumentStateError(
                    f"Cannot cancel invoice with payments ({invoice.paid_amount} paid); remove the payments first",
                    details={"invoice_id": invoice_id, "paid_amount": str(invoice.paid_amount)},
                )

            invoice.status = InvoiceStatus.CANCELLED
            if reason:
                invoice.notes = f"{invoice.notes}\nCancelled: {reason}" if invoice.notes else f"Cancelled: {reason}"
            await self.db.flush()

            corrected = await self.ledger.rebuild_balances(invoice.customer_id)

            await log_event(
                self.db,
                AuditAction.INVOICE_CANCELLED,
                actor_username=actor,
                customer_id=invoice.customer_id,
                entity_id=invoice.id,
                metadata={"reason": reason, "entries_corrected": corrected},
            )
        logger.info("Cancelled invoice %s (%s balances corrected)", invoice.invoice_number, corrected)
        return invoice

    async def invoice_deleted(self, invoice_id: str, actor: Optional[str] = None) -> None:
        """Delete a draft or unpaid invoice together with its ledger entry."""
        located = await self._get_invoice(invoice_id)

        async with self.ledger.mutation(located.customer_id, "invoice_deleted"):
            invoice = await self._get_invoice(invoice_id)
            if invoice.status not in DELETABLE_STATUSES or to_money(invoice.paid_amount) > 0:
                raise DocumentStateError(
                    "Only draft or unpaid invoices can be deleted; cancel the invoice instead",
                    details={"invoice_id": invoice_id, "status": invoice.status.value},
                )

            for entry in await self._document_entries(TransactionType.INVOICE, invoice.id):
                await self.ledger.remove_entry(entry, actor=actor)

            await log_event(
                self.db,
                AuditAction.INVOICE_DELETED,
                actor_username=actor,
                customer_id=invoice.customer_id,
                entity_id=invoice.id,
                metadata={"invoice_number": invoice.invoice_number},
            )
            await self.db.delete(invoice)
            await self.db.flush()

    async def payment_recorded(self, invoice_id: str, data: PaymentCreate, actor: Optional[str] = None) -> LedgerEntry:
        """Record a payment against an open invoice and credit it to the customer."""
        amount = parse_amount(data.amount)
        if amount <= 0:
            raise InvalidAmountError("Payment amount must be greater than 0", details={"amount": str(amount)})

        located = await self._get_invoice(invoice_id)

        async with self.ledger.mutation(located.customer_id, "payment_recorded") as customer:
            invoice = await self._get_invoice(invoice_id)
            if invoice.status in (InvoiceStatus.CANCELLED, InvoiceStatus.DRAFT):
                raise DocumentStateError(
                    f"Cannot record a payment on a {invoice.status.value} invoice",
                    details={"invoice_id": invoice_id},
                )

            outstanding = to_money(invoice.total_amount) - to_money(invoice.paid_amount)
            if amount > outstanding:
                raise InvalidAmountError(
                    f"Payment amount ({amount}) exceeds outstanding balance ({outstanding})",
                    details={"amount": str(amount), "outstanding": str(outstanding)},
                )

            invoice.payment_count = (invoice.payment_count or 0) + 1
            invoice.paid_amount = to_money(invoice.paid_amount) + amount
            invoice.status = derive_status(invoice)
            await self.db.flush()

            entry = await self.ledger.post_entry(
                LedgerEntryCreate(
                    customer_id=customer.id,
                    transaction_type=TransactionType.PAYMENT,
                    transaction_id=invoice.id,
                    transaction_number=payment_number(invoice, invoice.payment_count),
                    date=data.date,
                    description=f"Payment for invoice {invoice.invoice_number}",
                    credit=amount,
                    payment_method=data.payment_method,
                    reference=data.reference,
                    created_by=actor or "system",
                ),
                customer,
            )
            await log_event(
                self.db,
                AuditAction.PAYMENT_RECORDED,
                actor_username=actor,
                customer_id=customer.id,
                entity_id=invoice.id,
                metadata={"transaction_number": entry.transaction_number, "amount": str(amount)},
            )
        return entry

    async def payment_updated(
        self,
        invoice_id: str,
        transaction_number: str,
        data: PaymentUpdate,
        actor: Optional[str] = None,
    ) -> LedgerEntry:
        """Change a recorded payment; the invoice may not end up overpaid."""
        amount = parse_amount(data.amount)
        if amount <= 0:
            raise InvalidAmountError("Payment amount must be greater than 0", details={"amount": str(amount)})

        located = await self._get_invoice(invoice_id)

        async with self.ledger.mutation(located.customer_id, "payment_updated"):
            invoice = await self._get_invoice(invoice_id)
            entry = await self.ledger.find_document_entry(TransactionType.PAYMENT, invoice.id, transaction_number)

            old_amount = to_money(entry.credit)
            new_paid = to_money(invoice.paid_amount) - old_amount + amount
            if new_paid > to_money(invoice.total_amount):
                raise InvalidAmountError(
                    f"Paid amount ({new_paid}) would exceed invoice total ({invoice.total_amount})",
                    details={"paid_amount": str(new_paid), "total_amount": str(invoice.total_amount)},
                )

            invoice.paid_amount = new_paid
            if invoice.status != InvoiceStatus.CANCELLED:
                invoice.status = derive_status(invoice)

            changes = document_changes(
                entry,
                amount,
                new_date=data.date,
                payment_method=data.payment_method,
                reference=data.reference,
            )
            entry = await self.ledger.revise_entry(entry, changes, actor=actor)

            await log_event(
                self.db,
                AuditAction.PAYMENT_UPDATED,
                actor_username=actor,
                customer_id=invoice.customer_id,
                entity_id=invoice.id,
                metadata={
                    "transaction_number": transaction_number,
                    "old_amount": str(old_amount),
                    "new_amount": str(amount),
                },
            )
        return entry

    async def payment_removed(self, invoice_id: str, transaction_number: str, actor: Optional[str] = None) -> Invoice:
        """Remove a payment and take it back off the invoice."""
        located = await self._get_invoice(invoice_id)

        async with self.ledger.mutation(located.customer_id, "payment_removed"):
            invoice = await self._get_invoice(invoice_id)
            entry = await self.ledger.find_document_entry(TransactionType.PAYMENT, invoice.id, transaction_number)

            amount = to_money(entry.credit)
            invoice.paid_amount = max(to_money(invoice.paid_amount) - amount, Decimal("0.00"))
            if invoice.status != InvoiceStatus.CANCELLED:
                invoice.status = derive_status(invoice)

            await self.ledger.remove_entry(entry, actor=actor)

            await log_event(
                self.db,
                AuditAction.PAYMENT_REMOVED,
                actor_username=actor,
                customer_id=invoice.customer_id,
                entity_id=invoice.id,
                metadata={"transaction_number": transaction_number, "amount": str(amount)},
            )
        return invoice
