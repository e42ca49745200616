"""
Canonical ordering of ledger entries within a customer partition.

Entries are ordered by (date, created_at, id). `id` only breaks ties between
entries created within the same clock tick, so the order is total.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import and_, or_

from backoffice.app.core.exceptions import InvalidAmountError
from backoffice.app.models.ledger_entry import LedgerEntry

CENT = Decimal("0.01")

# Largest value a Numeric(14, 2) money column holds
MAX_AMOUNT = Decimal("999999999999.99")

CANONICAL_ORDER = (LedgerEntry.date.asc(), LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
NEWEST_FIRST = (LedgerEntry.date.desc(), LedgerEntry.created_at.desc(), LedgerEntry.id.desc())


def to_money(value) -> Decimal:
    """Normalize a DB/driver numeric (Decimal, float, int or None) to a 2dp Decimal."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT)


def parse_amount(value, field: str = "amount") -> Decimal:
    """
    Normalize an incoming amount, rejecting values the money columns cannot hold.

    Raises InvalidAmountError for NaN, infinities and magnitudes above MAX_AMOUNT.
    """
    try:
        amount = to_money(value)
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmountError(f"{field} is not a valid amount", details={field: str(value)}) from exc
    if not amount.is_finite() or abs(amount) > MAX_AMOUNT:
        raise InvalidAmountError(
            f"{field} exceeds the largest supported amount",
            details={field: str(value), "max": str(MAX_AMOUNT)},
        )
    return amount


def ordered_before(
    on_date: date,
    created_at: Optional[datetime] = None,
    entry_id: Optional[int] = None,
):
    """
    SQL predicate: entry sorts strictly before the given position.

    Without `created_at` only the date is compared, which is the view of a
    hypothetical insertion point that has not been persisted yet.
    """
    if created_at is None:
        return LedgerEntry.date < on_date

    earlier_same_day = LedgerEntry.created_at < created_at
    if entry_id is not None:
        earlier_same_day = or_(
            earlier_same_day,
            and_(LedgerEntry.created_at == created_at, LedgerEntry.id < entry_id),
        )
    return or_(
        LedgerEntry.date < on_date,
        and_(LedgerEntry.date == on_date, earlier_same_day),
    )


def ordered_after(
    on_date: date,
    created_at: datetime,
    entry_id: Optional[int] = None,
):
    """SQL predicate: entry sorts strictly after the given position."""
    later_same_day = LedgerEntry.created_at > created_at
    if entry_id is not None:
        later_same_day = or_(
            later_same_day,
            and_(LedgerEntry.created_at == created_at, LedgerEntry.id > entry_id),
        )
    return or_(
        LedgerEntry.date > on_date,
        and_(LedgerEntry.date == on_date, later_same_day),
    )
