"""
Invoice Lifecycle Tests.

Invoice and payment actions keep the document and the ledger in step.
"""

import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy import select

from backoffice.app.core.exceptions import DocumentStateError, InvalidAmountError, ResourceNotFoundError
from backoffice.app.domain.ledger.document_hooks import InvoiceLedgerHooks, derive_status, payment_number
from backoffice.app.domain.ledger.projections import LedgerSummaryService
from backoffice.app.models.audit_log import AuditLog
from backoffice.app.models.invoice import Invoice
from backoffice.app.models.ledger_entry import LedgerEntry
from backoffice.app.models.ledger_enums import InvoiceStatus, PaymentMethod, TransactionType
from backoffice.app.schemas.invoice import InvoiceCreate, PaymentCreate, PaymentUpdate
from backoffice.app.schemas.ledger import LedgerEntryCreate
from backoffice.app.services.audit import AuditAction, get_audit_trail

INVOICE_ID = "inv-2024-abc123"


@pytest.fixture
def hooks(ledger):
    return InvoiceLedgerHooks(ledger)


async def issue(hooks, customer, total="1000", invoice_id=INVOICE_ID, number="INV-1001", on=date(2024, 1, 1)):
    return await hooks.invoice_issued(
        InvoiceCreate(
            id=invoice_id,
            invoice_number=number,
            customer_id=customer.id,
            date=on,
            due_date=date(2024, 1, 31),
            total_amount=Decimal(total),
        ),
        actor="clerk",
    )


async def pay(hooks, amount, on=date(2024, 1, 5), invoice_id=INVOICE_ID):
    return await hooks.payment_recorded(
        invoice_id,
        PaymentCreate(amount=Decimal(amount), date=on, payment_method=PaymentMethod.BANK_TRANSFER, reference="TRX-1"),
        actor="clerk",
    )


async def reload_invoice(db, invoice_id=INVOICE_ID):
    result = await db.execute(
        select(Invoice).where(Invoice.id == invoice_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def test_payment_number_format():
    invoice = Invoice(id=INVOICE_ID)
    assert payment_number(invoice, 3) == "PAY-ABC123-3"


def test_status_derivation():
    assert derive_status(Invoice(total_amount=Decimal("100"), paid_amount=Decimal("0"))) == InvoiceStatus.PENDING
    assert derive_status(Invoice(total_amount=Decimal("100"), paid_amount=Decimal("40"))) == InvoiceStatus.PARTIAL
    assert derive_status(Invoice(total_amount=Decimal("100"), paid_amount=Decimal("100"))) == InvoiceStatus.PAID


@pytest.mark.asyncio
async def test_issue_invoice_posts_debit(hooks, ledger, customer, db_session):
    invoice = await issue(hooks, customer)

    assert invoice.status == InvoiceStatus.PENDING
    entry = await ledger.find_document_entry(TransactionType.INVOICE, INVOICE_ID)
    assert entry.debit == Decimal("1000.00")
    assert entry.balance == Decimal("1000.00")
    assert entry.transaction_number == "INV-1001"

    trail = await get_audit_trail(db_session, customer_id=customer.id, action=AuditAction.INVOICE_ISSUED)
    assert len(trail) == 1
    assert trail[0].actor_username == "clerk"


@pytest.mark.asyncio
async def test_duplicate_invoice_number_rejected(hooks, customer):
    await issue(hooks, customer)

    with pytest.raises(DocumentStateError):
        await issue(hooks, customer, invoice_id="inv-other")


@pytest.mark.asyncio
async def test_payments_are_numbered_and_update_status(hooks, customer, db_session):
    await issue(hooks, customer)

    first = await pay(hooks, "400")
    assert first.transaction_number == "PAY-ABC123-1"
    assert first.credit == Decimal("400.00")
    assert first.balance == Decimal("600.00")
    assert first.payment_method == PaymentMethod.BANK_TRANSFER

    invoice = await reload_invoice(db_session)
    assert invoice.status == InvoiceStatus.PARTIAL
    assert invoice.paid_amount == Decimal("400.00")

    second = await pay(hooks, "600", on=date(2024, 1, 9))
    assert second.transaction_number == "PAY-ABC123-2"
    assert second.balance == Decimal("0.00")

    invoice = await reload_invoice(db_session)
    assert invoice.status == InvoiceStatus.PAID


@pytest.mark.asyncio
async def test_overpayment_rejected(hooks, customer, db_session):
    await issue(hooks, customer)
    await pay(hooks, "400")

    with pytest.raises(InvalidAmountError):
        await pay(hooks, "700")
    with pytest.raises(InvalidAmountError):
        await pay(hooks, "0")

    invoice = await reload_invoice(db_session)
    assert invoice.paid_amount == Decimal("400.00")
    assert invoice.payment_count == 1


@pytest.mark.asyncio
async def test_removed_payment_number_not_reused(hooks, ledger, customer, db_session):
    await issue(hooks, customer)
    await pay(hooks, "300")
    await pay(hooks, "200", on=date(2024, 1, 6))

    invoice = await hooks.payment_removed(INVOICE_ID, "PAY-ABC123-1")
    assert invoice.paid_amount == Decimal("200.00")
    assert invoice.status == InvoiceStatus.PARTIAL
    assert invoice.payment_count == 2

    remaining = await ledger.find_document_entry(TransactionType.PAYMENT, INVOICE_ID)
    assert remaining.transaction_number == "PAY-ABC123-2"
    assert remaining.balance == Decimal("800.00")

    third = await pay(hooks, "100", on=date(2024, 1, 7))
    assert third.transaction_number == "PAY-ABC123-3"


@pytest.mark.asyncio
async def test_payment_update_cannot_overpay(hooks, customer, db_session):
    await issue(hooks, customer)
    await pay(hooks, "400")
    await pay(hooks, "500", on=date(2024, 1, 6))

    with pytest.raises(InvalidAmountError):
        await hooks.payment_updated(INVOICE_ID, "PAY-ABC123-1", PaymentUpdate(amount=Decimal("600")))

    entry = await hooks.payment_updated(
        INVOICE_ID, "PAY-ABC123-1", PaymentUpdate(amount=Decimal("500"), date=date(2024, 1, 8))
    )
    assert entry.credit == Decimal("500.00")
    # Moved after the second payment
    assert entry.balance == Decimal("0.00")

    invoice = await reload_invoice(db_session)
    assert invoice.status == InvoiceStatus.PAID


@pytest.mark.asyncio
async def test_cannot_cancel_paid_invoice(hooks, customer, db_session):
    await issue(hooks, customer)
    await pay(hooks, "100")

    with pytest.raises(DocumentStateError):
        await hooks.invoice_cancelled(INVOICE_ID)

    invoice = await reload_invoice(db_session)
    assert invoice.status == InvoiceStatus.PARTIAL


@pytest.mark.asyncio
async def test_cancel_keeps_entry_and_rebuilds_balances(hooks, ledger, customer, db_session, check_balances):
    await issue(hooks, customer)
    later = await ledger.create_entry(
        LedgerEntryCreate(
            customer_id=customer.id,
            transaction_type=TransactionType.ADJUSTMENT,
            transaction_number="ADJ-1",
            date=date(2024, 2, 1),
            description="Freight charge",
            debit=Decimal("50"),
        )
    )
    assert later.balance == Decimal("1050.00")

    invoice = await hooks.invoice_cancelled(INVOICE_ID, reason="Customer withdrew order")
    assert invoice.status == InvoiceStatus.CANCELLED
    assert "Customer withdrew order" in invoice.notes

    later = await ledger.get_entry(later.id)
    assert later.balance == Decimal("50.00")
    entries = await check_balances(customer.id, {INVOICE_ID})
    assert len(entries) == 2

    summary = await LedgerSummaryService(db_session).get_customer_summary(customer.id)
    assert summary.current_balance == 50.0

    with pytest.raises(DocumentStateError):
        await hooks.invoice_cancelled(INVOICE_ID)
    with pytest.raises(DocumentStateError):
        await pay(hooks, "10")


@pytest.mark.asyncio
async def test_amount_change_respects_paid_amount(hooks, ledger, customer, db_session):
    await issue(hooks, customer)
    payment = await pay(hooks, "400")
    payment_id = payment.id

    with pytest.raises(InvalidAmountError):
        await hooks.invoice_amount_changed(INVOICE_ID, Decimal("300"))

    invoice = await hooks.invoice_amount_changed(INVOICE_ID, Decimal("400"))
    assert invoice.status == InvoiceStatus.PAID

    payment = await ledger.get_entry(payment_id)
    assert payment.balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_delete_unpaid_invoice(hooks, customer, db_session):
    await issue(hooks, customer)

    await hooks.invoice_deleted(INVOICE_ID, actor="clerk")

    assert await reload_invoice(db_session) is None
    entries = (await db_session.execute(select(LedgerEntry))).scalars().all()
    assert entries == []
    audit = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.INVOICE_DELETED)
    )).scalars().all()
    assert len(audit) == 1


@pytest.mark.asyncio
async def test_delete_paid_invoice_refused(hooks, customer):
    await issue(hooks, customer)
    await pay(hooks, "50")

    with pytest.raises(DocumentStateError):
        await hooks.invoice_deleted(INVOICE_ID)


@pytest.mark.asyncio
async def test_unknown_invoice(hooks):
    with pytest.raises(ResourceNotFoundError):
        await pay(hooks, "10", invoice_id="nope")
