"""
Consistency Audit Tests.
"""

import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy import update

from backoffice.app.domain.ledger.consistency import IssueKind, LedgerConsistencyService
from backoffice.app.domain.ledger.document_hooks import InvoiceLedgerHooks
from backoffice.app.models.invoice import Invoice
from backoffice.app.models.ledger_entry import LedgerEntry
from backoffice.app.models.ledger_enums import TransactionType
from backoffice.app.schemas.invoice import InvoiceCreate, PaymentCreate
from backoffice.app.schemas.ledger import LedgerEntryCreate


@pytest.fixture
def hooks(ledger):
    return InvoiceLedgerHooks(ledger)


@pytest.fixture
def consistency(ledger):
    return LedgerConsistencyService(ledger)


async def issue_and_pay(hooks, customer, invoice_id, number, total="500", paid="200"):
    await hooks.invoice_issued(InvoiceCreate(
        id=invoice_id,
        invoice_number=number,
        customer_id=customer.id,
        date=date(2024, 1, 1),
        total_amount=Decimal(total),
    ))
    if paid:
        return await hooks.payment_recorded(invoice_id, PaymentCreate(amount=Decimal(paid), date=date(2024, 1, 3)))


def kinds(report):
    return {issue.kind for issue in report.issues}


@pytest.mark.asyncio
async def test_clean_ledger_is_consistent(hooks, consistency, customer):
    await issue_and_pay(hooks, customer, "inv-aaa111", "INV-1")

    report = await consistency.verify_consistency()

    assert report.is_consistent
    assert report.issues == []
    assert report.total_entries == 2


@pytest.mark.asyncio
async def test_cancelled_entries_are_informational(hooks, consistency, customer):
    await issue_and_pay(hooks, customer, "inv-aaa111", "INV-1", paid=None)
    await hooks.invoice_cancelled("inv-aaa111")

    report = await consistency.verify_consistency()

    assert report.is_consistent
    assert kinds(report) == {IssueKind.CANCELLED_DOCUMENT_ENTRIES}
    assert report.issues[0].transaction_id == "inv-aaa111"


@pytest.mark.asyncio
async def test_balance_drift_detected_and_repaired(hooks, consistency, customer, db_session, check_balances):
    payment = await issue_and_pay(hooks, customer, "inv-aaa111", "INV-1")

    await db_session.execute(
        update(LedgerEntry).where(LedgerEntry.id == payment.id).values(balance=Decimal("999"))
    )
    await db_session.commit()

    report = await consistency.verify_consistency()
    assert not report.is_consistent
    assert report.issue_counts == {IssueKind.BALANCE_DRIFT: 1}
    assert report.issues[0].details["entry_ids"] == [payment.id]

    result = await consistency.recalculate_balances()
    assert result.customers_processed == 1
    assert result.entries_corrected == 1

    await check_balances(customer.id)
    assert (await consistency.verify_consistency()).is_consistent


@pytest.mark.asyncio
async def test_payment_and_status_mismatch(hooks, consistency, customer, db_session):
    await issue_and_pay(hooks, customer, "inv-aaa111", "INV-1")

    await db_session.execute(
        update(Invoice).where(Invoice.id == "inv-aaa111").values(paid_amount=Decimal("500"))
    )
    await db_session.commit()

    report = await consistency.verify_consistency()

    assert kinds(report) == {IssueKind.MISMATCHED_PAYMENTS, IssueKind.INCORRECT_INVOICE_STATUS}


@pytest.mark.asyncio
async def test_renumber_duplicate_payment_numbers(hooks, ledger, consistency, customer, make_customer):
    first = await issue_and_pay(hooks, customer, "inv-aaa111", "INV-1")
    other = await make_customer("Other Co")
    await issue_and_pay(hooks, other, "inv-bbb222", "INV-2", paid=None)

    # Legacy import reused the first customer's payment number
    legacy = await ledger.create_entry(LedgerEntryCreate(
        customer_id=other.id,
        transaction_type=TransactionType.PAYMENT,
        transaction_id="inv-bbb222",
        transaction_number=first.transaction_number,
        date=date(2024, 1, 4),
        description="Imported payment",
        credit=Decimal("50"),
    ))

    report = await consistency.verify_consistency()
    assert IssueKind.DUPLICATE_TRANSACTION_NUMBERS in kinds(report)

    renumbered = await consistency.renumber_payment_entries(actor="ops")
    assert renumbered == 1

    legacy = await ledger.get_entry(legacy.id)
    assert legacy.transaction_number == "PAY-BBB222-1"
    first = await ledger.get_entry(first.id)
    assert first.transaction_number == "PAY-AAA111-1"

    report = await consistency.verify_consistency()
    assert IssueKind.DUPLICATE_TRANSACTION_NUMBERS not in kinds(report)
