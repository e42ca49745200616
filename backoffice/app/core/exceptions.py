"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
Ledger errors map onto the engine's error taxonomy: not found, invalid
amount, conflicting state, failed status lookup and failed transaction.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("backoffice.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class InvalidAmountError(AppException):
    """Raised when a debit, credit or payment amount is rejected before any write."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_AMOUNT",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class DuplicateTransactionNumberError(AppException):
    """Raised when a customer already has an entry with the same transaction number."""

    def __init__(self, customer_id: int, transaction_number: str):
        super().__init__(
            message=f"Transaction number {transaction_number} already used for customer {customer_id}",
            error_code="ERR_LEDGER_DUPLICATE",
            status_code=status.HTTP_409_CONFLICT,
            details={"customer_id": customer_id, "transaction_number": transaction_number}
        )


class AmbiguousEntryError(AppException):
    """Raised when a document locator matches more than one ledger entry."""

    def __init__(self, transaction_type: str, transaction_id: str, matches: int):
        super().__init__(
            message=(
                f"{matches} {transaction_type} entries reference document {transaction_id}; "
                "a transaction number is required"
            ),
            error_code="ERR_LEDGER_AMBIGUOUS",
            status_code=status.HTTP_409_CONFLICT,
            details={"transaction_type": transaction_type, "transaction_id": transaction_id, "matches": matches}
        )


class DocumentStateError(AppException):
    """Raised when a source document cannot make the requested lifecycle transition."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_DOCUMENT_STATE",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class CancellationLookupError(AppException):
    """Raised when the cancelled-document lookup fails."""

    def __init__(self, message: str = "Could not determine cancelled documents"):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_LOOKUP",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )


class LedgerTransactionError(AppException):
    """Raised when a ledger mutation fails mid-sequence and was rolled back."""

    def __init__(self, operation: str, customer_id: Any = None):
        super().__init__(
            message=f"Ledger {operation} failed and was rolled back",
            error_code="ERR_LEDGER_TX",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"operation": operation, "customer_id": customer_id}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Strip non-serializable context (e.g. exception objects) from validation errors."""
    errors = []
    for error in exc.errors():
        error = dict(error)
        error.pop("ctx", None)
        error.pop("input", None)
        errors.append(error)
    return errors


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
