"""
Invoice and Payment Schemas.

The invoicing collaborator's view of the ledger: issuing, repricing,
cancelling and paying invoices.
"""

from pydantic import BaseModel, Field
import datetime as dt
from decimal import Decimal
from typing import Optional
from backoffice.app.models.ledger_enums import InvoiceStatus, PaymentMethod


class InvoiceCreate(BaseModel):
    """Schema for issuing an invoice."""
    id: Optional[str] = Field(None, max_length=64, description="Generated when omitted")
    invoice_number: str = Field(..., min_length=1, max_length=64)
    customer_id: int
    date: dt.date
    due_date: Optional[dt.date] = None
    total_amount: Decimal = Field(..., max_digits=14, decimal_places=2)
    notes: Optional[str] = Field(None, max_length=1000)


class InvoiceAmountUpdate(BaseModel):
    total_amount: Decimal = Field(..., max_digits=14, decimal_places=2)
    date: Optional[dt.date] = None


class InvoiceCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PaymentCreate(BaseModel):
    """Schema for recording a payment against an invoice."""
    amount: Decimal = Field(..., max_digits=14, decimal_places=2)
    date: dt.date
    payment_method: PaymentMethod = PaymentMethod.CASH
    reference: Optional[str] = Field(None, max_length=255)


class PaymentUpdate(BaseModel):
    amount: Decimal = Field(..., max_digits=14, decimal_places=2)
    date: Optional[dt.date] = None
    payment_method: Optional[PaymentMethod] = None
    reference: Optional[str] = Field(None, max_length=255)


class InvoiceResponse(BaseModel):
    """Schema for displaying an invoice."""
    id: str
    invoice_number: str
    customer_id: int
    date: dt.date
    due_date: Optional[dt.date]
    total_amount: float
    paid_amount: float
    payment_count: int
    status: InvoiceStatus
    notes: Optional[str]

    class Config:
        from_attributes = True
