"""
Audit Log Database Model.

Tracks every balance-affecting change to the ledger and to the documents
that drive it, so a customer's balance history can be reconstructed.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backoffice.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for ledger mutations.

    Events logged:
    - LEDGER_ENTRY_CREATED / UPDATED / DELETED
    - LEDGER_BALANCES_RECALCULATED / LEDGER_PAYMENTS_RENUMBERED
    - CUSTOMER_CREATED
    - INVOICE_ISSUED / INVOICE_AMOUNT_CHANGED / INVOICE_CANCELLED / INVOICE_DELETED
    - PAYMENT_RECORDED / PAYMENT_UPDATED / PAYMENT_REMOVED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Which ledger partition and record were touched
    customer_id = Column(Integer, index=True, nullable=True)
    entity_id = Column(String(64), nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username}, customer={self.customer_id})>"
