"""
Ledger Service (Balance Engine).

Maintains each customer's running balance across out-of-order inserts, edits
and deletes. Every entry caches the prefix sum of (debit - credit) over the
eligible entries ordered at or before it; a write computes its own balance
from the entries before it, then shifts every later entry by the delta it
introduced with one bulk UPDATE.

Mutations are serialized per customer (in-process lock plus a row lock on
the customer) and run in a single transaction that is committed here.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from math import ceil
from typing import Any, Callable, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.config import settings
from backoffice.app.core.exceptions import (
    AmbiguousEntryError,
    DuplicateTransactionNumberError,
    InvalidAmountError,
    LedgerTransactionError,
    ResourceNotFoundError,
)
from backoffice.app.domain.ledger.cancellation import (
    CancellationSource,
    InvoiceCancellationSource,
    eligibility_clause,
    is_eligible,
    load_cancelled_ids,
)
from backoffice.app.domain.ledger.locking import CustomerLockRegistry, customer_locks
from backoffice.app.domain.ledger.ordering import (
    CANONICAL_ORDER,
    NEWEST_FIRST,
    ordered_after,
    ordered_before,
    parse_amount,
    to_money,
)
from backoffice.app.models.customer import Customer
from backoffice.app.models.ledger_entry import LedgerEntry
from backoffice.app.models.ledger_enums import CREDIT_SIDE_TYPES, TransactionType
from backoffice.app.schemas.ledger import LedgerEntryCreate, LedgerEntryUpdate, LedgerFilters
from backoffice.app.services.audit import AuditAction, log_event

logger = logging.getLogger("backoffice.ledger")

ZERO = Decimal("0.00")

# Fields an entry revision may touch
REVISABLE_FIELDS = ("date", "description", "debit", "credit", "payment_method", "reference", "transaction_number")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def running_balances(entries: list[LedgerEntry], cancelled_ids: set[str]) -> list[tuple[LedgerEntry, Decimal]]:
    """
    Recompute balances from scratch for entries already in canonical order.

    An excluded entry is shown with the running balance plus its own amount
    but does not advance the running balance for the entries after it.
    """
    running = ZERO
    expected = []
    for entry in entries:
        balance = running + to_money(entry.debit) - to_money(entry.credit)
        if is_eligible(entry, cancelled_ids):
            running = balance
        expected.append((entry, balance))
    return expected


def _check_amounts(debit: Decimal, credit: Decimal) -> None:
    if debit < 0 or credit < 0:
        raise InvalidAmountError(
            "Debit and credit amounts must be non-negative",
            details={"debit": str(debit), "credit": str(credit)},
        )


class LedgerService:
    """
    Balance maintenance for the customer ledger.

    Public operations (`create_entry`, `update_entry*`, `delete_entry*`) each
    open their own mutation. The primitives (`post_entry`, `revise_entry`,
    `remove_entry`, `rebuild_balances`) must be called inside `mutation()`,
    which lets document hooks combine several of them in one transaction.
    """

    def __init__(
        self,
        db: AsyncSession,
        cancellations: Optional[CancellationSource] = None,
        locks: Optional[CustomerLockRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.cancellations = cancellations or InvoiceCancellationSource()
        self.locks = locks or customer_locks
        self.clock = clock or utcnow

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def mutation(self, customer_id: int, operation: str):
        """
        Serialize and commit one balance-affecting operation for a customer.

        Yields the customer row, locked for the duration of the transaction.
        Any failure rolls back every write made inside the block.
        """
        async with self.locks.hold(customer_id):
            try:
                customer = await self._lock_customer(customer_id)
                yield customer
                await self.db.commit()
            except SQLAlchemyError as exc:
                await self.db.rollback()
                logger.error("Ledger %s failed for customer %s: %s", operation, customer_id, exc)
                raise LedgerTransactionError(operation, customer_id) from exc
            except Exception:
                await self.db.rollback()
                raise

    async def _lock_customer(self, customer_id: int) -> Customer:
        result = await self.db.execute(
            select(Customer).where(Customer.id == customer_id).with_for_update()
        )
        customer = result.scalar_one_or_none()
        if not customer:
            raise ResourceNotFoundError("Customer", customer_id)
        return customer

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def balance_before(
        self,
        customer_id: int,
        on_date: date,
        created_at: Optional[datetime] = None,
        entry_id: Optional[int] = None,
        cancelled_ids: Optional[set[str]] = None,
    ) -> Decimal:
        """
        Sum of (debit - credit) over eligible entries strictly before a position.

        Always aggregates the raw amounts, never the cached balances.
        """
        if cancelled_ids is None:
            cancelled_ids = await load_cancelled_ids(self.cancellations, self.db, customer_id)

        result = await self.db.execute(
            select(func.coalesce(func.sum(LedgerEntry.debit - LedgerEntry.credit), 0)).where(
                LedgerEntry.customer_id == customer_id,
                ordered_before(on_date, created_at, entry_id),
                eligibility_clause(cancelled_ids),
            )
        )
        return to_money(result.scalar())

    async def get_entry(self, entry_id: int) -> LedgerEntry:
        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        entry = result.scalar_one_or_none()
        if not entry:
            raise ResourceNotFoundError("Ledger entry", entry_id)
        return entry

    async def find_document_entry(
        self,
        transaction_type: TransactionType,
        transaction_id: str,
        transaction_number: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Locate the single entry mirroring a source document.

        A document with several entries (an invoice's payments) needs the
        transaction number to pick one.
        """
        query = (
            select(LedgerEntry)
            .where(
                LedgerEntry.transaction_type == transaction_type,
                LedgerEntry.transaction_id == transaction_id,
            )
            .order_by(*CANONICAL_ORDER)
            .execution_options(populate_existing=True)
        )
        if transaction_number:
            query = query.where(LedgerEntry.transaction_number == transaction_number)

        result = await self.db.execute(query)
        matches = list(result.scalars().all())

        if not matches:
            locator = f"{transaction_type.value}:{transaction_id}"
            if transaction_number:
                locator = f"{locator}:{transaction_number}"
            raise ResourceNotFoundError("Ledger entry", locator)
        if len(matches) > 1:
            raise AmbiguousEntryError(transaction_type.value, transaction_id, len(matches))
        return matches[0]

    async def list_customer_entries(self, customer_id: int) -> list[LedgerEntry]:
        """Eligible entries of one customer, newest first."""
        customer = await self.db.get(Customer, customer_id)
        if not customer:
            raise ResourceNotFoundError("Customer", customer_id)

        cancelled_ids = await load_cancelled_ids(self.cancellations, self.db, customer_id)
        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.customer_id == customer_id, eligibility_clause(cancelled_ids))
            .order_by(*NEWEST_FIRST)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_entries(self, filters: LedgerFilters) -> dict[str, Any]:
        """Paginated entry search across customers, newest first."""
        limit = min(filters.limit or settings.ledger_page_size, settings.ledger_max_page_size)
        conditions = []

        if filters.customer_id is not None:
            conditions.append(LedgerEntry.customer_id == filters.customer_id)
        if filters.transaction_type is not None:
            conditions.append(LedgerEntry.transaction_type == filters.transaction_type)
        if filters.start_date is not None:
            conditions.append(LedgerEntry.date >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(LedgerEntry.date <= filters.end_date)

        magnitude = LedgerEntry.debit + LedgerEntry.credit
        if filters.min_amount is not None:
            conditions.append(magnitude >= filters.min_amount)
        if filters.max_amount is not None:
            conditions.append(magnitude <= filters.max_amount)

        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(
                or_(
                    LedgerEntry.description.ilike(pattern),
                    LedgerEntry.transaction_number.ilike(pattern),
                    LedgerEntry.customer_name.ilike(pattern),
                    LedgerEntry.reference.ilike(pattern),
                )
            )

        if not filters.include_excluded:
            cancelled_ids = await load_cancelled_ids(self.cancellations, self.db, filters.customer_id)
            conditions.append(eligibility_clause(cancelled_ids))

        total_result = await self.db.execute(
            select(func.count(LedgerEntry.id)).where(*conditions)
        )
        total = total_result.scalar() or 0

        result = await self.db.execute(
            select(LedgerEntry)
            .where(*conditions)
            .order_by(*NEWEST_FIRST)
            .offset((filters.page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return paginate(list(result.scalars().all()), total, filters.page, limit)

    # ------------------------------------------------------------------
    # Primitives (call inside mutation())
    # ------------------------------------------------------------------

    async def _shift_balances(self, customer_id: int, window, delta: Decimal, exclude_id: Optional[int] = None) -> int:
        """Add `delta` to the cached balance of every entry in `window`."""
        stmt = (
            update(LedgerEntry)
            .where(LedgerEntry.customer_id == customer_id, window)
            .values(balance=LedgerEntry.balance + delta)
            .execution_options(synchronize_session=False)
        )
        if exclude_id is not None:
            stmt = stmt.where(LedgerEntry.id != exclude_id)

        result = await self.db.execute(stmt)
        logger.debug("Shifted %s entries of customer %s by %s", result.rowcount, customer_id, delta)
        return result.rowcount

    async def post_entry(self, data: LedgerEntryCreate, customer: Customer) -> LedgerEntry:
        """Insert an entry at its canonical position and propagate its delta."""
        debit = parse_amount(data.debit, "debit")
        credit = parse_amount(data.credit, "credit")
        _check_amounts(debit, credit)

        existing = await self.db.execute(
            select(LedgerEntry.id).where(
                LedgerEntry.customer_id == customer.id,
                LedgerEntry.transaction_number == data.transaction_number,
            )
        )
        if existing.first():
            raise DuplicateTransactionNumberError(customer.id, data.transaction_number)

        cancelled_ids = await load_cancelled_ids(self.cancellations, self.db, customer.id)

        now = self.clock()
        entry = LedgerEntry(
            customer_id=customer.id,
            customer_name=data.customer_name or customer.name,
            customer_company=data.customer_company or customer.company,
            transaction_type=data.transaction_type,
            transaction_id=data.transaction_id,
            transaction_number=data.transaction_number,
            date=data.date,
            description=data.description,
            debit=debit,
            credit=credit,
            balance=ZERO,
            payment_method=data.payment_method,
            reference=data.reference,
            created_by=data.created_by,
            created_at=now,
            updated_at=now,
        )
        self.db.add(entry)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise DuplicateTransactionNumberError(customer.id, data.transaction_number) from exc

        previous = await self.balance_before(
            customer.id, entry.date, entry.created_at, entry.id, cancelled_ids=cancelled_ids
        )
        entry.balance = previous + debit - credit

        delta = debit - credit if is_eligible(entry, cancelled_ids) else ZERO
        shifted = 0
        if delta:
            shifted = await self._shift_balances(
                customer.id, ordered_after(entry.date, entry.created_at, entry.id), delta
            )
        await self.db.flush()

        await log_event(
            self.db,
            AuditAction.LEDGER_ENTRY_CREATED,
            actor_username=data.created_by,
            customer_id=customer.id,
            entity_id=entry.id,
            metadata={
                "transaction_type": entry.transaction_type.value,
                "transaction_number": entry.transaction_number,
                "delta": str(delta),
                "shifted": shifted,
            },
        )
        logger.info(
            "Posted ledger entry %s for customer %s (delta %s, %s later entries shifted)",
            entry.id, customer.id, delta, shifted,
        )
        return entry

    async def revise_entry(self, entry: LedgerEntry, changes: dict[str, Any], actor: Optional[str] = None) -> LedgerEntry:
        """
        Apply field changes to an entry and repair the balances they affect.

        A date change moves the entry: its old delta is undone on the entries
        after its old position and its new delta applied after the new one.
        """
        unknown = set(changes) - set(REVISABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot revise ledger entry fields: {sorted(unknown)}")

        new_number = changes.get("transaction_number")
        if new_number and new_number != entry.transaction_number:
            clash = await self.db.execute(
                select(LedgerEntry.id).where(
                    LedgerEntry.customer_id == entry.customer_id,
                    LedgerEntry.transaction_number == new_number,
                    LedgerEntry.id != entry.id,
                )
            )
            if clash.first():
                raise DuplicateTransactionNumberError(entry.customer_id, new_number)

        cancelled_ids = await load_cancelled_ids(self.cancellations, self.db, entry.customer_id)
        eligible = is_eligible(entry, cancelled_ids)

        old_date = entry.date
        old_delta = to_money(entry.debit) - to_money(entry.credit)

        debit = parse_amount(changes.get("debit", entry.debit), "debit")
        credit = parse_amount(changes.get("credit", entry.credit), "credit")
        _check_amounts(debit, credit)

        for field, value in changes.items():
            if field in ("debit", "credit"):
                continue
            setattr(entry, field, value)
        entry.debit = debit
        entry.credit = credit
        entry.updated_at = self.clock()

        new_delta = debit - credit
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise DuplicateTransactionNumberError(entry.customer_id, entry.transaction_number) from exc

        old_effect = old_delta if eligible else ZERO
        new_effect = new_delta if eligible else ZERO

        if entry.date != old_date:
            if old_effect:
                await self._shift_balances(
                    entry.customer_id,
                    ordered_after(old_date, entry.created_at, entry.id),
                    -old_effect,
                    exclude_id=entry.id,
                )
            if new_effect:
                await self._shift_balances(
                    entry.customer_id,
                    ordered_after(entry.date, entry.created_at, entry.id),
                    new_effect,
                    exclude_id=entry.id,
                )
        elif new_effect != old_effect:
            await self._shift_balances(
                entry.customer_id,
                ordered_after(entry.date, entry.created_at, entry.id),
                new_effect - old_effect,
                exclude_id=entry.id,
            )

        previous = await self.balance_before(
            entry.customer_id, entry.date, entry.created_at, entry.id, cancelled_ids=cancelled_ids
        )
        entry.balance = previous + new_delta
        await self.db.flush()

        await log_event(
            self.db,
            AuditAction.LEDGER_ENTRY_UPDATED,
            actor_username=actor,
            customer_id=entry.customer_id,
            entity_id=entry.id,
            metadata={
                "changes": sorted(changes),
                "old_delta": str(old_delta),
                "new_delta": str(new_delta),
                "moved": entry.date != old_date,
            },
        )
        logger.info(
            "Revised ledger entry %s for customer %s (delta %s -> %s)",
            entry.id, entry.customer_id, old_delta, new_delta,
        )
        return entry

    async def remove_entry(self, entry: LedgerEntry, actor: Optional[str] = None) -> None:
        """Delete an entry and take its delta back out of every later balance."""
        cancelled_ids = await load_cancelled_ids(self.cancellations, self.db, entry.customer_id)
        delta = to_money(entry.debit) - to_money(entry.credit)
        effect = delta if is_eligible(entry, cancelled_ids) else ZERO

        customer_id = entry.customer_id
        entry_id = entry.id
        window = ordered_after(entry.date, entry.created_at, entry.id)
        metadata = {
            "transaction_type": entry.transaction_type.value,
            "transaction_id": entry.transaction_id,
            "transaction_number": entry.transaction_number,
            "delta": str(effect),
        }

        await self.db.delete(entry)
        await self.db.flush()

        if effect:
            await self._shift_balances(customer_id, window, -effect)

        await log_event(
            self.db,
            AuditAction.LEDGER_ENTRY_DELETED,
            actor_username=actor,
            customer_id=customer_id,
            entity_id=entry_id,
            metadata=metadata,
        )
        logger.info("Removed ledger entry %s for customer %s (delta %s)", entry_id, customer_id, effect)

    async def rebuild_balances(self, customer_id: int, cancelled_ids: Optional[set[str]] = None) -> int:
        """
        Recompute every cached balance of a customer from scratch.

        Returns the number of entries whose stored balance was wrong.
        """
        await self.db.flush()
        if cancelled_ids is None:
            cancelled_ids = await load_cancelled_ids(self.cancellations, self.db, customer_id)

        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.customer_id == customer_id)
            .order_by(*CANONICAL_ORDER)
            .execution_options(populate_existing=True)
        )
        corrected = 0
        for entry, expected in running_balances(list(result.scalars().all()), cancelled_ids):
            if to_money(entry.balance) != expected:
                entry.balance = expected
                corrected += 1

        await self.db.flush()
        if corrected:
            logger.info("Rebuilt balances for customer %s: %s entries corrected", customer_id, corrected)
        return corrected

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def create_entry(self, data: LedgerEntryCreate) -> LedgerEntry:
        async with self.mutation(data.customer_id, "create") as customer:
            entry = await self.post_entry(data, customer)
        return entry

    async def update_entry(self, entry_id: int, changes: LedgerEntryUpdate, actor: Optional[str] = None) -> LedgerEntry:
        located = await self.get_entry(entry_id)
        async with self.mutation(located.customer_id, "update"):
            entry = await self.get_entry(entry_id)
            entry = await self.revise_entry(
                entry, changes.model_dump(exclude_unset=True, exclude_none=True), actor=actor
            )
        return entry

    async def update_entry_for_document(
        self,
        transaction_type: TransactionType,
        transaction_id: str,
        new_amount: Decimal,
        new_date: Optional[date] = None,
        new_description: Optional[str] = None,
        payment_method=None,
        reference: Optional[str] = None,
        transaction_number: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Mirror a change of a source document onto its ledger entry.

        `new_amount` lands on the side the entry already uses; a fresh zero
        entry uses credit for payments and credit notes, debit otherwise.
        """
        amount = parse_amount(new_amount)
        if amount < 0:
            raise InvalidAmountError("Amount must be non-negative", details={"amount": str(amount)})

        located = await self.find_document_entry(transaction_type, transaction_id, transaction_number)
        async with self.mutation(located.customer_id, "update"):
            entry = await self.find_document_entry(transaction_type, transaction_id, transaction_number)
            changes = document_changes(
                entry,
                amount,
                new_date=new_date,
                new_description=new_description,
                payment_method=payment_method,
                reference=reference,
            )
            entry = await self.revise_entry(entry, changes, actor=actor)
        return entry

    async def delete_entry(self, entry_id: int, actor: Optional[str] = None) -> None:
        located = await self.get_entry(entry_id)
        async with self.mutation(located.customer_id, "delete"):
            entry = await self.get_entry(entry_id)
            await self.remove_entry(entry, actor=actor)

    async def delete_entry_for_document(
        self,
        transaction_type: TransactionType,
        transaction_id: str,
        transaction_number: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> None:
        located = await self.find_document_entry(transaction_type, transaction_id, transaction_number)
        async with self.mutation(located.customer_id, "delete"):
            entry = await self.find_document_entry(transaction_type, transaction_id, transaction_number)
            await self.remove_entry(entry, actor=actor)


def document_changes(
    entry: LedgerEntry,
    amount: Decimal,
    new_date: Optional[date] = None,
    new_description: Optional[str] = None,
    payment_method=None,
    reference: Optional[str] = None,
) -> dict[str, Any]:
    """Build a revision that puts `amount` on the entry's side."""
    if to_money(entry.credit) > 0:
        credit_side = True
    elif to_money(entry.debit) > 0:
        credit_side = False
    else:
        credit_side = entry.transaction_type in CREDIT_SIDE_TYPES

    changes: dict[str, Any] = {
        "debit": ZERO if credit_side else amount,
        "credit": amount if credit_side else ZERO,
    }
    if new_date is not None:
        changes["date"] = new_date
    if new_description is not None:
        changes["description"] = new_description
    if payment_method is not None:
        changes["payment_method"] = payment_method
    if reference is not None:
        changes["reference"] = reference
    return changes


def paginate(docs: list, total: int, page: int, limit: int) -> dict[str, Any]:
    total_pages = ceil(total / limit) if total else 0
    return {
        "docs": docs,
        "total_docs": total,
        "limit": limit,
        "page": page,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
        "next_page": page + 1 if page < total_pages else None,
        "prev_page": page - 1 if page > 1 else None,
    }
