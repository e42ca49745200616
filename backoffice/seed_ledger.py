"""
Database seeding script for a demo ledger.

Creates a few customers with invoices and payments so the ledger
endpoints have something to show. Run this script after the database
is set up.
"""

import asyncio
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backoffice.app.db.session import AsyncSessionLocal, Base, engine
from backoffice.app.domain.ledger.document_hooks import InvoiceLedgerHooks
from backoffice.app.domain.ledger.ledger_service import LedgerService
from backoffice.app.models.customer import Customer
from backoffice.app.models.ledger_enums import PaymentMethod, TransactionType
from backoffice.app.schemas.invoice import InvoiceCreate, PaymentCreate
from backoffice.app.schemas.ledger import LedgerEntryCreate
from sqlalchemy import select

# Registers the remaining tables on Base.metadata
from backoffice.app.models import audit_log, invoice, ledger_entry  # noqa: F401

CUSTOMERS = [
    ("Northwind Traders", "accounts@northwind.example", "Northwind Ltd"),
    ("Harbor Supplies", "billing@harbor.example", "Harbor Group"),
    ("Summit Foods", "finance@summit.example", None),
]


async def seed_ledger():
    """
    Seed demo customers and their ledgers.

    Creates:
    - 3 customers
    - 2 invoices per customer, the first one partly paid
    - 1 opening adjustment for the first customer
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting ledger seeding...")

        result = await db.execute(select(Customer).where(Customer.email == CUSTOMERS[0][1]))
        if result.scalar_one_or_none():
            print("ℹ️  Demo customers already exist, skipping seeding")
            return

        customers = []
        for name, email, company in CUSTOMERS:
            customer = Customer(name=name, email=email, company=company)
            db.add(customer)
            customers.append(customer)
        await db.commit()
        print(f"✅ Created {len(customers)} customers")

        ledger = LedgerService(db)
        hooks = InvoiceLedgerHooks(ledger)

        for index, customer in enumerate(customers, start=1):
            for month in (1, 2):
                invoice_id = f"seed{index:02d}{month:02d}"
                await hooks.invoice_issued(
                    InvoiceCreate(
                        id=invoice_id,
                        invoice_number=f"INV-{index:02d}{month:02d}",
                        customer_id=customer.id,
                        date=date(2024, month, 5),
                        due_date=date(2024, month, 28),
                        total_amount=Decimal(500 * index),
                    ),
                    actor="seed",
                )
                if month == 1:
                    await hooks.payment_recorded(
                        invoice_id,
                        PaymentCreate(
                            amount=Decimal(200 * index),
                            date=date(2024, 1, 20),
                            payment_method=PaymentMethod.BANK_TRANSFER,
                        ),
                        actor="seed",
                    )
            print(f"✅ Seeded invoices and payments for {customer.name}")

        # Backdated opening balance exercises the balance shift
        await ledger.create_entry(
            LedgerEntryCreate(
                customer_id=customers[0].id,
                transaction_type=TransactionType.ADJUSTMENT,
                transaction_number="OPEN-0001",
                date=date(2023, 12, 31),
                description="Opening balance carried forward",
                debit=Decimal("150"),
                created_by="seed",
            )
        )

        print("\n🎉 Ledger seeding completed successfully!")
        print("\nTry:")
        print("  - GET /v1/ledger/customers?has_balance=true")
        print("  - GET /v1/ledger/summary")


if __name__ == "__main__":
    asyncio.run(seed_ledger())
