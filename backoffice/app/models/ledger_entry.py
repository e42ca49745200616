"""
Ledger Entry database model.

One row per financial event affecting a customer's running balance.
"""

from sqlalchemy import (
    Column, Integer, Numeric, ForeignKey, DateTime, Date, Enum, String, Index, UniqueConstraint
)
from backoffice.app.db.session import Base
from backoffice.app.models.ledger_enums import TransactionType, PaymentMethod


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class LedgerEntry(Base):
    """
    Ledger Entry model.

    `balance` is a cached prefix sum: the balance of the preceding eligible
    entry for the same customer plus this entry's debit minus its credit.
    Canonical order within a customer is (date, created_at, id).
    Entries of cancelled documents stay in the table for audit and are
    filtered out of balance math at read and write time.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint('customer_id', 'transaction_number', name='uq_ledger_customer_txn_number'),
        Index('ix_ledger_customer_order', 'customer_id', 'date', 'created_at'),
        Index('ix_ledger_document', 'transaction_type', 'transaction_id'),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Owner (denormalized name/company captured at posting time)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    customer_name = Column(String(255), nullable=False)
    customer_company = Column(String(255), nullable=True)

    # Source document linkage
    transaction_type = Column(
        Enum(TransactionType, values_callable=_enum_values, name="ledger_transaction_type"),
        nullable=False,
        index=True,
    )
    transaction_id = Column(String(64), nullable=True)
    transaction_number = Column(String(64), nullable=False, index=True)

    # Entry details
    date = Column(Date, nullable=False)
    description = Column(String(500), nullable=False)

    # Financials
    debit = Column(Numeric(14, 2), nullable=False, default=0)
    credit = Column(Numeric(14, 2), nullable=False, default=0)
    balance = Column(Numeric(14, 2), nullable=False, default=0)

    # Metadata
    payment_method = Column(
        Enum(PaymentMethod, values_callable=_enum_values, name="ledger_payment_method"),
        nullable=True,
    )
    reference = Column(String(255), nullable=True)
    created_by = Column(String(100), nullable=False)

    # Timestamps (created_at is assigned by the ledger service clock and never changes)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return (
            f"<LedgerEntry(id={self.id}, customer={self.customer_id}, "
            f"type='{self.transaction_type.value}', balance={self.balance})>"
        )
