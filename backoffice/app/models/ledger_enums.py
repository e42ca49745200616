"""
Ledger and invoice enumerations.
"""

import enum


class TransactionType(str, enum.Enum):
    """Kind of financial event recorded against a customer."""
    INVOICE = "invoice"  # Debit: customer owes more
    PAYMENT = "payment"  # Credit: customer owes less
    ADJUSTMENT = "adjustment"
    CREDIT_NOTE = "credit_note"
    DEBIT_NOTE = "debit_note"


# Only entries tied to a source document can be excluded by its cancellation
CANCELLABLE_TYPES = (TransactionType.INVOICE, TransactionType.PAYMENT)

# Types whose amount lands on the credit side
CREDIT_SIDE_TYPES = (TransactionType.PAYMENT, TransactionType.CREDIT_NOTE)


class PaymentMethod(str, enum.Enum):
    """Payment method enumeration."""
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    ONLINE = "online"
    CHEQUE = "cheque"
    UPI = "upi"
    CARD = "card"


class InvoiceStatus(str, enum.Enum):
    """Invoice status enumeration."""
    DRAFT = "draft"
    PENDING = "pending"  # Issued, nothing paid
    PARTIAL = "partial"  # Some payments recorded
    PAID = "paid"
    CANCELLED = "cancelled"  # Voided, ledger entries kept for audit


# Statuses that still carry an outstanding amount
OPEN_INVOICE_STATUSES = (InvoiceStatus.PENDING, InvoiceStatus.PARTIAL)
