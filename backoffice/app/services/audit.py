"""
Audit logging service for ledger and document lifecycle events.

Audit rows are added to the caller's session and flushed, never committed
here: they commit or roll back together with the ledger change they describe.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backoffice.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    CUSTOMER_CREATED = "CUSTOMER_CREATED"

    LEDGER_ENTRY_CREATED = "LEDGER_ENTRY_CREATED"
    LEDGER_ENTRY_UPDATED = "LEDGER_ENTRY_UPDATED"
    LEDGER_ENTRY_DELETED = "LEDGER_ENTRY_DELETED"
    LEDGER_BALANCES_RECALCULATED = "LEDGER_BALANCES_RECALCULATED"
    LEDGER_PAYMENTS_RENUMBERED = "LEDGER_PAYMENTS_RENUMBERED"

    # Invoice collaborator
    INVOICE_ISSUED = "INVOICE_ISSUED"
    INVOICE_AMOUNT_CHANGED = "INVOICE_AMOUNT_CHANGED"
    INVOICE_CANCELLED = "INVOICE_CANCELLED"
    INVOICE_DELETED = "INVOICE_DELETED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    PAYMENT_UPDATED = "PAYMENT_UPDATED"
    PAYMENT_REMOVED = "PAYMENT_REMOVED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_username: Optional[str] = None,
    customer_id: Optional[int] = None,
    entity_id: Optional[Any] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Log a ledger event to the audit log.

    Args:
        db: Database session (transaction owned by the caller)
        action: Action being performed (use AuditAction constants)
        actor_username: User or system component performing the action
        customer_id: Ledger partition affected
        entity_id: Ledger entry or document id
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        action=action,
        actor_username=actor_username,
        customer_id=customer_id,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta_data=metadata,
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    customer_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Args:
        db: Database session
        customer_id: Filter by ledger partition
        action: Filter by action type
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if customer_id:
        query = query.where(AuditLog.customer_id == customer_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
