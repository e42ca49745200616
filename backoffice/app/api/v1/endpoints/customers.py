"""
Customer API Endpoints.

Registration and lookup of ledger owners.
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional

from backoffice.app.db.session import get_db
from backoffice.app.models.customer import Customer
from backoffice.app.schemas.customer import CustomerCreate, CustomerResponse
from backoffice.app.core.exceptions import DocumentStateError, ResourceNotFoundError
from backoffice.app.core.dependencies import get_actor
from backoffice.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/customers", tags=["Customers"])


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    data: CustomerCreate,
    actor: Optional[str] = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Register a customer.

    Email addresses are unique across customers.
    """
    existing = await db.execute(select(Customer.id).where(Customer.email == data.email))
    if existing.first():
        raise DocumentStateError(
            f"Customer with email {data.email} already exists",
            details={"email": data.email}
        )

    customer = Customer(
        name=data.name,
        email=data.email,
        company=data.company,
        phone=data.phone,
    )
    db.add(customer)
    await db.flush()

    await log_event(
        db,
        action=AuditAction.CUSTOMER_CREATED,
        actor_username=actor,
        customer_id=customer.id,
        entity_id=customer.id,
        metadata={"email": customer.email}
    )

    await db.commit()
    await db.refresh(customer)
    return customer


@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(
    customer_id: int = Path(..., description="Customer ID"),
    db: AsyncSession = Depends(get_db)
):
    """Get a single customer."""
    customer = await db.get(Customer, customer_id)
    if not customer:
        raise ResourceNotFoundError("Customer", customer_id)
    return customer
