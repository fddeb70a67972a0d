"""
Domain errors

Every business failure raised by the services is a DomainError subclass that
carries a stable machine-readable code and the HTTP status it maps to. The
API layer renders them as {"success": false, "code": ..., "message": ...}.
"""

import logging

logger = logging.getLogger(__name__)


class DomainError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"success": False, "code": self.code, "message": self.message}


class ValidationError(DomainError):
    """Malformed or missing input."""
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFound(DomainError):
    code = "NOT_FOUND"
    status_code = 404


class InsufficientStock(DomainError):
    """Ledger availability check failed."""
    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, item_name: str, required: int, available: int):
        self.item_name = item_name
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient stock for {item_name}: needed {required}, available {available}"
        )


class Conflict(DomainError):
    """Illegal state transition or duplicate identity."""
    code = "CONFLICT"
    status_code = 409


class Forbidden(DomainError):
    code = "FORBIDDEN"
    status_code = 403


class PaymentError(DomainError):
    code = "PAYMENT_FAILED"
    status_code = 402


class InvariantViolation(DomainError):
    """
    A mutation would break a ledger invariant (negative quantity, reserved
    above quantity). Indicates a bug or a race, so it is logged on creation.
    """
    code = "INVARIANT_VIOLATION"
    status_code = 500

    def __init__(self, message: str, **context):
        self.context = context
        super().__init__(message)
        logger.error(f"Invariant violation: {message} context={context}")


class InternalError(DomainError):
    code = "INTERNAL_ERROR"
    status_code = 500
