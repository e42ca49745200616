"""
Ledger Consistency Audit & Repair.

Offline sweep over the whole ledger. Integrity problems are reported, never
raised; repairs run customer by customer through the normal ledger mutation
so they serialize with live writes.
"""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select

from backoffice.app.domain.ledger.cancellation import is_eligible, load_cancelled_ids
from backoffice.app.domain.ledger.document_hooks import derive_status, payment_number
from backoffice.app.domain.ledger.ledger_service import LedgerService, running_balances
from backoffice.app.domain.ledger.ordering import CANONICAL_ORDER, to_money
from backoffice.app.models.invoice import Invoice
from backoffice.app.models.ledger_entry import LedgerEntry
from backoffice.app.models.ledger_enums import CANCELLABLE_TYPES, InvoiceStatus, TransactionType
from backoffice.app.schemas.ledger import ConsistencyIssue, ConsistencyReport, RecalculationResult
from backoffice.app.services.audit import AuditAction, log_event

logger = logging.getLogger("backoffice.ledger.consistency")


class IssueKind:
    CANCELLED_DOCUMENT_ENTRIES = "cancelled_document_entries"
    MISMATCHED_PAYMENTS = "mismatched_payments"
    DUPLICATE_TRANSACTION_NUMBERS = "duplicate_transaction_numbers"
    INCORRECT_INVOICE_STATUS = "incorrect_invoice_status"
    CANCELLED_WITH_PAYMENTS = "cancelled_with_payments"
    BALANCE_DRIFT = "balance_drift"


# Expected state, reported for audit only
INFORMATIONAL_KINDS = {IssueKind.CANCELLED_DOCUMENT_ENTRIES}


class LedgerConsistencyService:

    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.db = ledger.db

    async def verify_consistency(self) -> ConsistencyReport:
        """Scan every entry and invoice and report integrity violations."""
        cancelled_ids = await load_cancelled_ids(self.ledger.cancellations, self.db)

        entries_result = await self.db.execute(
            select(LedgerEntry)
            .order_by(LedgerEntry.customer_id, *CANONICAL_ORDER)
            .execution_options(populate_existing=True)
        )
        entries = list(entries_result.scalars().all())

        invoices_result = await self.db.execute(
            select(Invoice).execution_options(populate_existing=True)
        )
        invoices = list(invoices_result.scalars().all())

        issues: list[ConsistencyIssue] = []
        issues.extend(self._cancelled_document_entries(entries, cancelled_ids))
        issues.extend(self._mismatched_payments(entries, invoices))
        issues.extend(self._duplicate_transaction_numbers(entries))
        issues.extend(self._invoice_status_issues(entries, invoices))
        issues.extend(self._balance_drift(entries, cancelled_ids))

        counts: dict[str, int] = defaultdict(int)
        for issue in issues:
            counts[issue.kind] += 1

        is_consistent = all(issue.kind in INFORMATIONAL_KINDS for issue in issues)
        if not is_consistent:
            logger.warning("Ledger consistency check found issues: %s", dict(counts))

        return ConsistencyReport(
            checked_at=self.ledger.clock(),
            total_entries=len(entries),
            is_consistent=is_consistent,
            issue_counts=dict(counts),
            issues=issues,
        )

    def _cancelled_document_entries(self, entries, cancelled_ids) -> list[ConsistencyIssue]:
        grouped: dict[tuple, list[LedgerEntry]] = defaultdict(list)
        for entry in entries:
            if not is_eligible(entry, cancelled_ids):
                grouped[(entry.customer_id, entry.transaction_id)].append(entry)

        return [
            ConsistencyIssue(
                kind=IssueKind.CANCELLED_DOCUMENT_ENTRIES,
                customer_id=customer_id,
                transaction_id=transaction_id,
                message=f"{len(group)} entries of cancelled document {transaction_id} excluded from balances",
                details={"entry_ids": [entry.id for entry in group]},
            )
            for (customer_id, transaction_id), group in grouped.items()
        ]

    def _mismatched_payments(self, entries, invoices) -> list[ConsistencyIssue]:
        payments: dict[str, list[LedgerEntry]] = defaultdict(list)
        for entry in entries:
            if entry.transaction_type == TransactionType.PAYMENT and entry.transaction_id:
                payments[entry.transaction_id].append(entry)

        issues = []
        for invoice in invoices:
            recorded = payments.get(invoice.id, [])
            ledger_paid = sum((to_money(entry.credit) for entry in recorded), Decimal("0.00"))
            paid = to_money(invoice.paid_amount)
            if ledger_paid != paid or len(recorded) > (invoice.payment_count or 0):
                issues.append(
                    ConsistencyIssue(
                        kind=IssueKind.MISMATCHED_PAYMENTS,
                        customer_id=invoice.customer_id,
                        transaction_id=invoice.id,
                        transaction_number=invoice.invoice_number,
                        message=(
                            f"Invoice {invoice.invoice_number} records {paid} paid over "
                            f"{invoice.payment_count} payments; ledger has {ledger_paid} over {len(recorded)}"
                        ),
                        details={
                            "paid_amount": str(paid),
                            "ledger_paid": str(ledger_paid),
                            "payment_count": invoice.payment_count,
                            "ledger_payments": len(recorded),
                        },
                    )
                )
        return issues

    def _duplicate_transaction_numbers(self, entries) -> list[ConsistencyIssue]:
        by_number: dict[str, list[LedgerEntry]] = defaultdict(list)
        for entry in entries:
            by_number[entry.transaction_number].append(entry)

        return [
            ConsistencyIssue(
                kind=IssueKind.DUPLICATE_TRANSACTION_NUMBERS,
                transaction_number=number,
                message=f"Transaction number {number} is used by {len(group)} entries",
                details={
                    "entry_ids": [entry.id for entry in group],
                    "customer_ids": sorted({entry.customer_id for entry in group}),
                },
            )
            for number, group in by_number.items()
            if len(group) > 1
        ]

    def _invoice_status_issues(self, entries, invoices) -> list[ConsistencyIssue]:
        has_payments = {
            entry.transaction_id
            for entry in entries
            if entry.transaction_type == TransactionType.PAYMENT
        }

        issues = []
        for invoice in invoices:
            if invoice.status == InvoiceStatus.CANCELLED:
                if to_money(invoice.paid_amount) > 0 or invoice.id in has_payments:
                    issues.append(
                        ConsistencyIssue(
                            kind=IssueKind.CANCELLED_WITH_PAYMENTS,
                            customer_id=invoice.customer_id,
                            transaction_id=invoice.id,
                            transaction_number=invoice.invoice_number,
                            message=f"Cancelled invoice {invoice.invoice_number} still carries payments",
                            details={"paid_amount": str(to_money(invoice.paid_amount))},
                        )
                    )
                continue
            if invoice.status == InvoiceStatus.DRAFT:
                continue

            expected = derive_status(invoice)
            if invoice.status != expected:
                issues.append(
                    ConsistencyIssue(
                        kind=IssueKind.INCORRECT_INVOICE_STATUS,
                        customer_id=invoice.customer_id,
                        transaction_id=invoice.id,
                        transaction_number=invoice.invoice_number,
                        message=f"Invoice {invoice.invoice_number} is {invoice.status.value}, expected {expected.value}",
                        details={"status": invoice.status.value, "expected": expected.value},
                    )
                )
        return issues

    def _balance_drift(self, entries, cancelled_ids) -> list[ConsistencyIssue]:
        by_customer: dict[int, list[LedgerEntry]] = defaultdict(list)
        for entry in entries:
            by_customer[entry.customer_id].append(entry)

        issues = []
        for customer_id, customer_entries in by_customer.items():
            drifted = [
                (entry, expected)
                for entry, expected in running_balances(customer_entries, cancelled_ids)
                if to_money(entry.balance) != expected
            ]
            if drifted:
                first, expected = drifted[0]
                issues.append(
                    ConsistencyIssue(
                        kind=IssueKind.BALANCE_DRIFT,
                        customer_id=customer_id,
                        message=f"{len(drifted)} stored balances differ from the recomputed running balance",
                        details={
                            "entry_ids": [entry.id for entry, _ in drifted],
                            "first_entry_id": first.id,
                            "stored": str(to_money(first.balance)),
                            "expected": str(expected),
                        },
                    )
                )
        return issues

    async def recalculate_balances(self, customer_id: Optional[int] = None, actor: Optional[str] = None) -> RecalculationResult:
        """Rebuild cached balances from scratch for one customer or all of them."""
        if customer_id is not None:
            customer_ids = [customer_id]
        else:
            result = await self.db.execute(
                select(LedgerEntry.customer_id).distinct().order_by(LedgerEntry.customer_id)
            )
            customer_ids = list(result.scalars().all())

        corrected = 0
        for cid in customer_ids:
            async with self.ledger.mutation(cid, "recalculate"):
                fixed = await self.ledger.rebuild_balances(cid)
                await log_event(
                    self.db,
                    AuditAction.LEDGER_BALANCES_RECALCULATED,
                    actor_username=actor,
                    customer_id=cid,
                    metadata={"entries_corrected": fixed},
                )
            corrected += fixed

        logger.info("Recalculated balances for %s customers, %s entries corrected", len(customer_ids), corrected)
        return RecalculationResult(customers_processed=len(customer_ids), entries_corrected=corrected)

    async def renumber_payment_entries(self, actor: Optional[str] = None) -> int:
        """
        Give duplicated payment numbers fresh per-invoice sequence numbers.

        The earliest entry keeps a contested number; later ones are renumbered
        in creation order from the invoice's payment counter.
        """
        dupes_result = await self.db.execute(
            select(LedgerEntry.transaction_number)
            .group_by(LedgerEntry.transaction_number)
            .having(func.count(LedgerEntry.id) > 1)
        )
        duplicated = set(dupes_result.scalars().all())
        if not duplicated:
            return 0

        result = await self.db.execute(
            select(LedgerEntry.id, LedgerEntry.customer_id, LedgerEntry.transaction_number)
            .where(
                LedgerEntry.transaction_number.in_(duplicated),
                LedgerEntry.transaction_type.in_(CANCELLABLE_TYPES),
            )
            .order_by(LedgerEntry.created_at, LedgerEntry.id)
        )

        seen: set[str] = set()
        to_renumber: dict[int, list[int]] = defaultdict(list)
        for entry_id, cid, number in result.all():
            if number in seen:
                to_renumber[cid].append(entry_id)
            seen.add(number)

        renumbered = 0
        for cid, entry_ids in to_renumber.items():
            async with self.ledger.mutation(cid, "renumber"):
                for entry_id in entry_ids:
                    entry = await self.ledger.get_entry(entry_id)
                    if entry.transaction_type != TransactionType.PAYMENT or not entry.transaction_id:
                        continue
                    invoice = await self.db.get(Invoice, entry.transaction_id, populate_existing=True)
                    if not invoice:
                        continue

                    old_number = entry.transaction_number
                    invoice.payment_count = (invoice.payment_count or 0) + 1
                    new_number = payment_number(invoice, invoice.payment_count)
                    await self.ledger.revise_entry(entry, {"transaction_number": new_number}, actor=actor)
                    await log_event(
                        self.db,
                        AuditAction.LEDGER_PAYMENTS_RENUMBERED,
                        actor_username=actor,
                        customer_id=cid,
                        entity_id=entry.id,
                        metadata={"old_number": old_number, "new_number": new_number},
                    )
                    renumbered += 1

        logger.info("Renumbered %s payment entries", renumbered)
        return renumbered
