"""
Ledger read models: per-customer and cross-customer summaries.

READ-ONLY. Aggregations are recomputed on demand from eligible entries and
take no locks. A failing aggregation is logged and answered with zeros so
dashboards keep rendering.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional, Protocol

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.config import settings
from backoffice.app.core.exceptions import CancellationLookupError, ResourceNotFoundError
from backoffice.app.domain.ledger.cancellation import (
    CancellationSource,
    InvoiceCancellationSource,
    eligibility_clause,
    load_cancelled_ids,
)
from backoffice.app.domain.ledger.ledger_service import paginate, utcnow
from backoffice.app.domain.ledger.ordering import to_money
from backoffice.app.models.customer import Customer
from backoffice.app.models.invoice import Invoice
from backoffice.app.models.ledger_entry import LedgerEntry
from backoffice.app.models.ledger_enums import OPEN_INVOICE_STATUSES
from backoffice.app.schemas.ledger import CustomerLedger, CustomerSummary, LedgerSummary

logger = logging.getLogger("backoffice.ledger.summary")

READ_FAILURES = (SQLAlchemyError, CancellationLookupError)


def calculate_trend(current, previous) -> float:
    """Percentage change against the previous period; 100 when growing from zero."""
    current = float(current or 0)
    previous = float(previous or 0)
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def month_bounds(today: date) -> tuple[date, date]:
    """First day of the current month and of the previous month."""
    month_start = today.replace(day=1)
    previous_month_start = (month_start - timedelta(days=1)).replace(day=1)
    return month_start, previous_month_start


class OverdueSource(Protocol):
    async def overdue_amount(self, db: AsyncSession, as_of: date) -> Decimal:
        ...


class InvoiceOverdueSource:
    """Outstanding amount of open invoices whose due date has passed."""

    async def overdue_amount(self, db: AsyncSession, as_of: date) -> Decimal:
        result = await db.execute(
            select(func.coalesce(func.sum(Invoice.total_amount - Invoice.paid_amount), 0)).where(
                Invoice.status.in_(OPEN_INVOICE_STATUSES),
                Invoice.due_date.isnot(None),
                Invoice.due_date < as_of,
            )
        )
        return to_money(result.scalar())


class LedgerSummaryService:

    def __init__(
        self,
        db: AsyncSession,
        cancellations: Optional[CancellationSource] = None,
        overdue: Optional[OverdueSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.cancellations = cancellations or InvoiceCancellationSource()
        self.overdue = overdue or InvoiceOverdueSource()
        self.clock = clock or utcnow

    async def get_customer_summary(self, customer_id: int) -> CustomerSummary:
        """Totals and current balance for one customer."""
        customer = await self.db.get(Customer, customer_id)
        if not customer:
            raise ResourceNotFoundError("Customer", customer_id)

        try:
            cancelled_ids = await load_cancelled_ids(self.cancellations, self.db, customer_id)
            result = await self.db.execute(
                select(
                    func.coalesce(func.sum(LedgerEntry.debit), 0),
                    func.coalesce(func.sum(LedgerEntry.credit), 0),
                    func.max(LedgerEntry.date),
                ).where(
                    LedgerEntry.customer_id == customer_id,
                    eligibility_clause(cancelled_ids),
                )
            )
            total_debit, total_credit, last_date = result.one()
        except READ_FAILURES:
            logger.exception("Customer summary failed for customer %s", customer_id)
            return CustomerSummary(customer_id=customer_id)

        total_debit = to_money(total_debit)
        total_credit = to_money(total_credit)
        return CustomerSummary(
            customer_id=customer_id,
            total_debit=float(total_debit),
            total_credit=float(total_credit),
            current_balance=float(total_debit - total_credit),
            last_transaction_date=last_date,
        )

    async def list_customer_ledgers(
        self,
        has_balance: bool = False,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> dict:
        """
        Customers ranked by outstanding balance, highest first.

        `has_balance` keeps only customers who owe something. `search`
        matches name, company or email.
        """
        limit = min(limit or settings.ledger_page_size, settings.ledger_max_page_size)
        page = max(page, 1)

        try:
            cancelled_ids = await load_cancelled_ids(self.cancellations, self.db)

            total_debit = func.coalesce(func.sum(LedgerEntry.debit), 0)
            total_credit = func.coalesce(func.sum(LedgerEntry.credit), 0)
            balance = (total_debit - total_credit).label("current_balance")

            query = (
                select(
                    Customer,
                    total_debit.label("total_debit"),
                    total_credit.label("total_credit"),
                    balance,
                    func.max(LedgerEntry.date).label("last_transaction_date"),
                )
                .outerjoin(
                    LedgerEntry,
                    and_(LedgerEntry.customer_id == Customer.id, eligibility_clause(cancelled_ids)),
                )
                .group_by(Customer.id)
            )
            if search:
                pattern = f"%{search}%"
                query = query.where(
                    or_(
                        Customer.name.ilike(pattern),
                        Customer.company.ilike(pattern),
                        Customer.email.ilike(pattern),
                    )
                )
            if has_balance:
                query = query.having((total_debit - total_credit) > 0)

            total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0

            rows = await self.db.execute(
                query.order_by(balance.desc(), Customer.name.asc(), Customer.id.asc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            docs = [
                CustomerLedger(
                    customer_id=customer.id,
                    customer_name=customer.name,
                    customer_company=customer.company,
                    customer_email=customer.email,
                    total_debit=float(to_money(debit)),
                    total_credit=float(to_money(credit)),
                    current_balance=float(to_money(current)),
                    last_transaction_date=last_date,
                )
                for customer, debit, credit, current, last_date in rows.all()
            ]
        except READ_FAILURES:
            logger.exception("Customer ledger listing failed")
            return paginate([], 0, page, limit)

        return paginate(docs, total, page, limit)

    async def get_global_summary(self) -> LedgerSummary:
        """Dashboard figures across every customer."""
        today = self.clock().date()
        month_start, previous_month_start = month_bounds(today)

        try:
            cancelled_ids = await load_cancelled_ids(self.cancellations, self.db)
            eligible = eligibility_clause(cancelled_ids)

            total_customers = (await self.db.execute(select(func.count(Customer.id)))).scalar() or 0

            totals = await self.db.execute(
                select(
                    func.coalesce(func.sum(LedgerEntry.debit), 0),
                    func.coalesce(func.sum(LedgerEntry.credit), 0),
                ).where(eligible)
            )
            total_invoiced, total_received = (to_money(value) for value in totals.one())

            balances = (
                select(LedgerEntry.customer_id)
                .where(eligible)
                .group_by(LedgerEntry.customer_id)
                .having(func.sum(LedgerEntry.debit - LedgerEntry.credit) > 0)
            )
            customers_with_balance = (
                await self.db.execute(select(func.count()).select_from(balances.subquery()))
            ).scalar() or 0

            monthly_invoiced, monthly_received = await self._period_totals(eligible, month_start, today)
            previous_invoiced, previous_received = await self._period_totals(
                eligible, previous_month_start, month_start - timedelta(days=1)
            )

            overdue_amount = to_money(await self.overdue.overdue_amount(self.db, today))
        except READ_FAILURES:
            logger.exception("Global ledger summary failed")
            return LedgerSummary()

        return LedgerSummary(
            total_customers=total_customers,
            total_invoiced=float(total_invoiced),
            total_received=float(total_received),
            total_outstanding=float(total_invoiced - total_received),
            customers_with_balance=customers_with_balance,
            overdue_amount=float(overdue_amount),
            monthly_invoiced=float(monthly_invoiced),
            monthly_received=float(monthly_received),
            previous_month_invoiced=float(previous_invoiced),
            previous_month_received=float(previous_received),
            invoiced_trend=calculate_trend(monthly_invoiced, previous_invoiced),
            received_trend=calculate_trend(monthly_received, previous_received),
        )

    async def _period_totals(self, eligible, start: date, end: date) -> tuple[Decimal, Decimal]:
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(LedgerEntry.debit), 0),
                func.coalesce(func.sum(LedgerEntry.credit), 0),
            ).where(eligible, LedgerEntry.date >= start, LedgerEntry.date <= end)
        )
        debit, credit = result.one()
        return to_money(debit), to_money(credit)
