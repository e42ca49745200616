"""
Invoice database model.

Only the slice of invoice state the ledger depends on: identity, amounts,
payment sequence, due date and status. Rendering, line items and numbering
schemes belong to the invoicing collaborator.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, Date, Enum, String
from sqlalchemy.sql import func
from backoffice.app.db.session import Base
from backoffice.app.models.ledger_enums import InvoiceStatus


class Invoice(Base):
    """
    Invoice model.

    Status flow: DRAFT -> PENDING -> PARTIAL -> PAID, or any unpaid state -> CANCELLED.
    `payment_count` only ever grows so payment entries keep distinct numbers
    even after one of them is removed.
    """
    __tablename__ = "invoices"

    id = Column(String(64), primary_key=True)
    invoice_number = Column(String(64), nullable=False, unique=True, index=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)

    date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True, index=True)

    # Financials
    total_amount = Column(Numeric(14, 2), nullable=False)
    paid_amount = Column(Numeric(14, 2), nullable=False, default=0)
    payment_count = Column(Integer, nullable=False, default=0)

    status = Column(Enum(InvoiceStatus), default=InvoiceStatus.PENDING, nullable=False, index=True)
    notes = Column(String(1000), nullable=True)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def balance_amount(self):
        return self.total_amount - (self.paid_amount or 0)

    def __repr__(self):
        return f"<Invoice(id='{self.id}', number='{self.invoice_number}', status='{self.status.value}')>"
