"""
Summary Projection Tests.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from sqlalchemy.exc import OperationalError

from backoffice.app.core.exceptions import ResourceNotFoundError
from backoffice.app.domain.ledger.projections import (
    InvoiceOverdueSource,
    LedgerSummaryService,
    calculate_trend,
    month_bounds,
)
from backoffice.app.models.invoice import Invoice
from backoffice.app.models.ledger_enums import InvoiceStatus, TransactionType
from backoffice.app.schemas.ledger import LedgerEntryCreate


def fixed_clock():
    return datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class BrokenOverdueSource:
    async def overdue_amount(self, db, as_of):
        raise OperationalError("SELECT", {}, Exception("connection reset"))


class BrokenCancellationSource:
    async def cancelled_document_ids(self, db, customer_id=None):
        raise TimeoutError("status service timed out")


async def post(ledger, customer_id, number, on, debit=0, credit=0, kind=TransactionType.ADJUSTMENT):
    return await ledger.create_entry(
        LedgerEntryCreate(
            customer_id=customer_id,
            transaction_type=kind,
            transaction_number=number,
            date=on,
            description=number,
            debit=Decimal(str(debit)),
            credit=Decimal(str(credit)),
        )
    )


def test_trend_calculation():
    assert calculate_trend(150, 100) == 50.0
    assert calculate_trend(50, 100) == -50.0
    assert calculate_trend(10, 0) == 100.0
    assert calculate_trend(0, 0) == 0.0


def test_month_bounds_cross_year():
    assert month_bounds(date(2024, 1, 20)) == (date(2024, 1, 1), date(2023, 12, 1))
    assert month_bounds(date(2024, 3, 31)) == (date(2024, 3, 1), date(2024, 2, 1))


@pytest.mark.asyncio
async def test_customer_summary_for_empty_ledger(db_session, customer):
    summary = await LedgerSummaryService(db_session).get_customer_summary(customer.id)

    assert summary.total_debit == 0.0
    assert summary.current_balance == 0.0
    assert summary.last_transaction_date is None


@pytest.mark.asyncio
async def test_customer_summary_unknown_customer(db_session):
    with pytest.raises(ResourceNotFoundError):
        await LedgerSummaryService(db_session).get_customer_summary(404)


@pytest.mark.asyncio
async def test_customer_summary_zeroed_on_lookup_failure(db_session, ledger, customer):
    await post(ledger, customer.id, "ADJ-1", date(2024, 1, 1), debit=10)
    service = LedgerSummaryService(db_session, cancellations=BrokenCancellationSource())

    summary = await service.get_customer_summary(customer.id)

    assert summary.customer_id == customer.id
    assert summary.total_debit == 0.0
    assert summary.current_balance == 0.0


@pytest.mark.asyncio
async def test_customer_ledgers_ranked_by_balance(db_session, ledger, make_customer):
    owes = await make_customer("Bright Paints", company="Bright Group")
    credit = await make_customer("Cedar Works")
    idle = await make_customer("Delta Foods")

    await post(ledger, owes.id, "INV-1", date(2024, 1, 1), debit=500, kind=TransactionType.INVOICE)
    await post(ledger, credit.id, "CN-1", date(2024, 1, 1), credit=100, kind=TransactionType.CREDIT_NOTE)

    service = LedgerSummaryService(db_session)

    ranked = await service.list_customer_ledgers()
    assert [doc.customer_name for doc in ranked["docs"]] == ["Bright Paints", "Delta Foods", "Cedar Works"]
    assert ranked["docs"][0].current_balance == 500.0
    assert ranked["docs"][1].last_transaction_date is None
    assert ranked["total_docs"] == 3

    owing = await service.list_customer_ledgers(has_balance=True)
    assert [doc.customer_id for doc in owing["docs"]] == [owes.id]

    found = await service.list_customer_ledgers(search="bright group")
    assert [doc.customer_id for doc in found["docs"]] == [owes.id]

    paged = await service.list_customer_ledgers(page=2, limit=2)
    assert [doc.customer_id for doc in paged["docs"]] == [credit.id]
    assert paged["total_pages"] == 2
    assert paged["has_prev_page"] is True
    assert paged["has_next_page"] is False
    assert idle.id in [doc.customer_id for doc in ranked["docs"]]


@pytest.mark.asyncio
async def test_global_summary(db_session, ledger, make_customer):
    first = await make_customer("Bright Paints")
    second = await make_customer("Cedar Works")

    await post(ledger, first.id, "INV-MAR", date(2024, 3, 2), debit=500, kind=TransactionType.INVOICE)
    await post(ledger, first.id, "PAY-MAR", date(2024, 3, 10), credit=200, kind=TransactionType.PAYMENT)
    await post(ledger, first.id, "INV-FEB", date(2024, 2, 14), debit=250, kind=TransactionType.INVOICE)
    await post(ledger, second.id, "INV-JAN", date(2024, 1, 5), debit=100, kind=TransactionType.INVOICE)
    await post(ledger, second.id, "PAY-FEB", date(2024, 2, 20), credit=100, kind=TransactionType.PAYMENT)
    await post(ledger, second.id, "CN-FEB", date(2024, 2, 21), credit=50, kind=TransactionType.CREDIT_NOTE)

    db_session.add_all([
        Invoice(id="inv-overdue", invoice_number="INV-A", customer_id=first.id, date=date(2024, 2, 1),
                due_date=date(2024, 3, 1), total_amount=Decimal("300"), paid_amount=Decimal("100"),
                status=InvoiceStatus.PARTIAL),
        Invoice(id="inv-paid", invoice_number="INV-B", customer_id=first.id, date=date(2024, 2, 1),
                due_date=date(2024, 3, 1), total_amount=Decimal("80"), paid_amount=Decimal("80"),
                status=InvoiceStatus.PAID),
        Invoice(id="inv-future", invoice_number="INV-C", customer_id=second.id, date=date(2024, 3, 1),
                due_date=date(2024, 4, 1), total_amount=Decimal("90"), status=InvoiceStatus.PENDING),
    ])
    await db_session.commit()

    summary = await LedgerSummaryService(db_session, clock=fixed_clock).get_global_summary()

    assert summary.total_customers == 2
    assert summary.total_invoiced == 850.0
    assert summary.total_received == 350.0
    assert summary.total_outstanding == 500.0
    assert summary.customers_with_balance == 1
    assert summary.monthly_invoiced == 500.0
    assert summary.monthly_received == 200.0
    assert summary.previous_month_invoiced == 250.0
    assert summary.previous_month_received == 150.0
    assert summary.invoiced_trend == 100.0
    assert summary.received_trend == pytest.approx(33.333, rel=1e-3)
    assert summary.overdue_amount == 200.0


@pytest.mark.asyncio
async def test_overdue_source_ignores_cancelled(db_session, customer):
    db_session.add(Invoice(
        id="inv-void", invoice_number="INV-V", customer_id=customer.id, date=date(2024, 1, 1),
        due_date=date(2024, 1, 31), total_amount=Decimal("500"), status=InvoiceStatus.CANCELLED,
    ))
    await db_session.commit()

    amount = await InvoiceOverdueSource().overdue_amount(db_session, date(2024, 3, 1))
    assert amount == Decimal("0.00")


@pytest.mark.asyncio
async def test_global_summary_zeroed_on_failure(db_session, ledger, customer):
    await post(ledger, customer.id, "INV-1", date(2024, 3, 1), debit=100, kind=TransactionType.INVOICE)
    service = LedgerSummaryService(db_session, overdue=BrokenOverdueSource(), clock=fixed_clock)

    summary = await service.get_global_summary()

    assert summary.total_customers == 0
    assert summary.total_invoiced == 0.0
    assert summary.invoiced_trend == 0.0
