"""
Domain errors raised by the leasing and billing core.

Every error carries the HTTP status and machine-readable code the API layer
renders, so services never import FastAPI.
"""
from typing import Any, Dict, Optional


class AppError(Exception):
    """Base class for errors that map to an API response."""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(AppError):
    """Entity absent, soft-deleted, or owned by another tenant."""

    status_code = 404
    error_code = "NOT_FOUND"


class InvalidArgumentError(AppError):
    """Non-positive amount, malformed range, unsupported granularity, illegal transition."""

    status_code = 400
    error_code = "INVALID_ARGUMENT"


class InsufficientFundsError(AppError):
    status_code = 402
    error_code = "INSUFFICIENT_FUNDS"


class ConflictError(AppError):
    status_code = 409
    error_code = "CONFLICT"


class ResourceUnavailableError(ConflictError):
    """Proxy already leased, including a lost allocation race."""

    error_code = "RESOURCE_UNAVAILABLE"


class DuplicateError(ConflictError):
    error_code = "DUPLICATE"


class PaymentProviderError(AppError):
    status_code = 502
    error_code = "PAYMENT_PROVIDER_ERROR"
