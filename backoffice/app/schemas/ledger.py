"""
Ledger Schemas.

Request models carry Decimal amounts; response models render money as float,
like the rest of the back-office read APIs.
"""

from pydantic import BaseModel, Field
import datetime as dt
from decimal import Decimal
from typing import Optional, List
from backoffice.app.models.ledger_enums import TransactionType, PaymentMethod


class LedgerEntryCreate(BaseModel):
    """Schema for posting a ledger entry."""
    customer_id: int
    customer_name: Optional[str] = Field(None, max_length=255, description="Defaults to the customer's name")
    customer_company: Optional[str] = Field(None, max_length=255)
    transaction_type: TransactionType
    transaction_id: Optional[str] = Field(None, max_length=64, description="Source document id")
    transaction_number: str = Field(..., min_length=1, max_length=64)
    date: dt.date
    description: str = Field(..., min_length=1, max_length=500)
    debit: Decimal = Field(Decimal("0"), max_digits=14, decimal_places=2)
    credit: Decimal = Field(Decimal("0"), max_digits=14, decimal_places=2)
    payment_method: Optional[PaymentMethod] = None
    reference: Optional[str] = Field(None, max_length=255)
    created_by: str = Field("system", max_length=100)


class LedgerEntryUpdate(BaseModel):
    """Partial update of an entry; omitted fields stay unchanged."""
    date: Optional[dt.date] = None
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    debit: Optional[Decimal] = Field(None, max_digits=14, decimal_places=2)
    credit: Optional[Decimal] = Field(None, max_digits=14, decimal_places=2)
    payment_method: Optional[PaymentMethod] = None
    reference: Optional[str] = Field(None, max_length=255)


class DocumentEntryUpdate(BaseModel):
    """Update of the entry mirroring a source document."""
    amount: Decimal = Field(..., max_digits=14, decimal_places=2)
    date: Optional[dt.date] = None
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    payment_method: Optional[PaymentMethod] = None
    reference: Optional[str] = Field(None, max_length=255)
    transaction_number: Optional[str] = Field(
        None, max_length=64, description="Required when the document has several entries"
    )


class LedgerEntryResponse(BaseModel):
    """Schema for displaying a ledger entry."""
    id: int
    customer_id: int
    customer_name: str
    customer_company: Optional[str]
    transaction_type: TransactionType
    transaction_id: Optional[str]
    transaction_number: str
    date: dt.date
    description: str
    debit: float
    credit: float
    balance: float
    payment_method: Optional[PaymentMethod]
    reference: Optional[str]
    created_by: str
    created_at: dt.datetime
    updated_at: dt.datetime

    class Config:
        from_attributes = True


class CustomerSummary(BaseModel):
    """Per-customer totals over eligible entries."""
    customer_id: int
    total_debit: float = 0.0
    total_credit: float = 0.0
    current_balance: float = 0.0
    last_transaction_date: Optional[dt.date] = None


class CustomerLedger(CustomerSummary):
    """Customer row in the ranked ledger listing."""
    customer_name: str
    customer_company: Optional[str] = None
    customer_email: Optional[str] = None


class PaginatedResponse(BaseModel):
    """Pagination envelope shared by the listing endpoints."""
    total_docs: int
    limit: int
    page: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool
    next_page: Optional[int] = None
    prev_page: Optional[int] = None


class PaginatedCustomerLedgers(PaginatedResponse):
    docs: List[CustomerLedger]


class PaginatedLedgerEntries(PaginatedResponse):
    docs: List[LedgerEntryResponse]


class LedgerSummary(BaseModel):
    """Cross-customer dashboard figures."""
    total_customers: int = 0
    total_invoiced: float = 0.0
    total_received: float = 0.0
    total_outstanding: float = 0.0
    customers_with_balance: int = 0
    overdue_amount: float = 0.0
    monthly_invoiced: float = 0.0
    monthly_received: float = 0.0
    previous_month_invoiced: float = 0.0
    previous_month_received: float = 0.0
    invoiced_trend: float = 0.0
    received_trend: float = 0.0


class LedgerFilters(BaseModel):
    """Entry search filters."""
    customer_id: Optional[int] = None
    transaction_type: Optional[TransactionType] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    min_amount: Optional[Decimal] = Field(None, ge=0)
    max_amount: Optional[Decimal] = Field(None, ge=0)
    search: Optional[str] = Field(None, max_length=100)
    include_excluded: bool = False
    page: int = Field(1, ge=1)
    limit: Optional[int] = Field(None, ge=1)


class ConsistencyIssue(BaseModel):
    """One integrity finding of the audit pass."""
    kind: str
    customer_id: Optional[int] = None
    transaction_id: Optional[str] = None
    transaction_number: Optional[str] = None
    message: str
    details: dict = Field(default_factory=dict)


class ConsistencyReport(BaseModel):
    checked_at: dt.datetime
    total_entries: int
    is_consistent: bool
    issue_counts: dict[str, int]
    issues: List[ConsistencyIssue]


class RecalculationResult(BaseModel):
    customers_processed: int
    entries_corrected: int
    payments_renumbered: int = 0
