# app/errors.py
"""
Typed errors raised by the invoicing services.

Every error carries a machine-readable ``code`` and the HTTP status the API
maps it onto, so route handlers never parse messages:

    InvoicingError (base)
    +-- ValidationError          400  VALIDATION_ERROR
    +-- NotFoundError            404  NOT_FOUND
    +-- NotEditableError         409  NOT_EDITABLE
    |   +-- InvalidTransitionError   409  INVALID_TRANSITION
    +-- ProtectedStateError      409  PROTECTED_STATE
    +-- OverpaymentError         400  OVERPAYMENT
    +-- InsufficientCreditError  400  INSUFFICIENT_CREDIT
    +-- AlreadyAppliedError      409  ALREADY_APPLIED
    +-- AuthenticationError      401  INVALID_TOKEN
    +-- PermissionDeniedError    403  FORBIDDEN
    +-- DeliveryError            502  DELIVERY_FAILED
"""

from decimal import Decimal
from typing import Optional


class InvoicingError(Exception):
    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(InvoicingError):
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(InvoicingError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, key):
        super().__init__(f"{entity} {key} not found")
        self.entity = entity
        self.key = key


class NotEditableError(InvoicingError):
    """The record's current status forbids the requested mutation."""

    code = "NOT_EDITABLE"
    http_status = 409


class InvalidTransitionError(NotEditableError):
    code = "INVALID_TRANSITION"

    def __init__(self, status: str, event: str):
        super().__init__(f"Cannot apply '{event}' to an invoice in status '{status}'")
        self.status = status
        self.event = event


class ProtectedStateError(InvoicingError):
    """Paid invoices are retained for accounting: no delete, no void."""

    code = "PROTECTED_STATE"
    http_status = 409


class OverpaymentError(InvoicingError):
    code = "OVERPAYMENT"
    http_status = 400

    def __init__(self, amount: Decimal, outstanding: Decimal):
        super().__init__(
            f"Amount {amount} exceeds the outstanding balance of {outstanding}"
        )
        self.amount = amount
        self.outstanding = outstanding


class InsufficientCreditError(InvoicingError):
    code = "INSUFFICIENT_CREDIT"
    http_status = 400

    def __init__(self, amount: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient deposit credit: requested {amount}, available {available}"
        )
        self.amount = amount
        self.available = available


class AlreadyAppliedError(InvoicingError):
    code = "ALREADY_APPLIED"
    http_status = 409


class AuthenticationError(InvoicingError):
    code = "INVALID_TOKEN"
    http_status = 401


class PermissionDeniedError(InvoicingError):
    code = "FORBIDDEN"
    http_status = 403


class DeliveryError(InvoicingError):
    """The email collaborator reported a failed delivery."""

    code = "DELIVERY_FAILED"
    http_status = 502
