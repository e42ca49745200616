"""
Ledger Audit and Repair Script.

Runs the consistency audit against the configured database, optionally
renumbers duplicated payment entries, and rebuilds cached balances.

Usage:
    python scripts/recalculate_ledger.py [--customer ID] [--renumber] [--dry-run]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from backoffice.app.core.config import settings
from backoffice.app.core.observability import configure_logging
from backoffice.app.db.session import AsyncSessionLocal, engine
from backoffice.app.domain.ledger.consistency import INFORMATIONAL_KINDS, LedgerConsistencyService
from backoffice.app.domain.ledger.ledger_service import LedgerService

# Registers every table on Base.metadata
from backoffice.app.models import audit_log, customer, invoice, ledger_entry  # noqa: F401


def print_step(step, msg):
    print(f"[{step}] {msg}")


async def run(customer_id=None, renumber=False, dry_run=False):
    print_step("AUDIT", f"Checking ledger at {settings.database_url.split('@')[-1]}")

    async with AsyncSessionLocal() as db:
        consistency = LedgerConsistencyService(LedgerService(db))

        report = await consistency.verify_consistency()
        print_step("AUDIT", f"{report.total_entries} entries checked")
        for kind, count in sorted(report.issue_counts.items()):
            marker = "ℹ️ " if kind in INFORMATIONAL_KINDS else "⚠️ "
            print(f"  {marker} {kind}: {count}")

        if report.is_consistent:
            print("✅ Ledger is consistent")
        if dry_run:
            return 0 if report.is_consistent else 1

        if renumber:
            renumbered = await consistency.renumber_payment_entries(actor="maintenance")
            print_step("REPAIR", f"Renumbered {renumbered} payment entries")

        result = await consistency.recalculate_balances(customer_id=customer_id, actor="maintenance")
        print_step(
            "REPAIR",
            f"{result.customers_processed} customers processed, {result.entries_corrected} balances corrected",
        )

        report = await consistency.verify_consistency()
        if not report.is_consistent:
            print("❌ Issues remain after repair:")
            for issue in report.issues:
                if issue.kind not in INFORMATIONAL_KINDS:
                    print(f"  - {issue.kind}: {issue.message}")
            return 1

    print("✅ Ledger repaired")
    return 0


async def main(args):
    try:
        return await run(customer_id=args.customer, renumber=args.renumber, dry_run=args.dry_run)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Audit and rebuild customer ledger balances")
    parser.add_argument("--customer", type=int, default=None, help="Only rebuild this customer")
    parser.add_argument("--renumber", action="store_true", help="Renumber duplicated payment entries first")
    parser.add_argument("--dry-run", action="store_true", help="Report issues without repairing")
    args = parser.parse_args()

    configure_logging(settings.log_level)
    sys.exit(asyncio.run(main(args)))
