"""
Application exception hierarchy.

Services raise these; the handlers in ``app.core.exception_handlers`` turn
them into JSON bodies of the form
``{"error", "message", "status_code", "details"}``.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """Base class for errors that map to an HTTP status code."""

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.context or None,
        }


class InvoiceValidationError(AppException):
    """
    Raised for bad or out-of-range input: non-positive payment amounts,
    overpayment, malformed line items, duplicate invoice numbers.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid request"


class InvoiceNotFoundError(AppException):
    """HTTP Status: 404 Not Found"""

    status_code = 404
    default_message = "Invoice not found"


class InternalError(AppException):
    """
    Storage or unexpected failure. The message is always generic; the cause
    is logged, never returned.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Something went wrong!"


class RateLimitExceeded(AppException):
    """HTTP Status: 429 Too Many Requests"""

    status_code = 429
    default_message = "Too many requests from this IP, please try again later."
