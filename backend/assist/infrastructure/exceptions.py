"""
Custom Exceptions for the Assist backend

Hierarchical exception classes for the payment reconciliation engine.
``retryable`` tells the webhook pipeline whether redelivering the same
event can change the outcome.
"""

from typing import Optional, Dict, Any


class AssistError(Exception):
    """Base exception for all Assist backend errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class InvalidArgumentError(AssistError):
    """Raised when a checkout request is malformed. Never retried."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if field:
            details["field"] = field
        super().__init__(message, details, original_error)


class SignatureError(AssistError):
    """Raised when a webhook payload fails authentication."""
    pass


# =============================================================================
# Checkout return flow
# =============================================================================

class NotCompletedError(AssistError):
    """Raised when a checkout session has not been paid yet."""

    def __init__(
        self,
        message: str,
        payment_status: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if payment_status:
            details["payment_status"] = payment_status
        super().__init__(message, details, original_error)


class MissingCorrelationError(AssistError):
    """Raised when no account id can be recovered from a checkout session."""
    pass


# =============================================================================
# Payment processor
# =============================================================================

class UpstreamError(AssistError):
    """Base class for transient payment processor failures."""

    retryable = True

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        attempts: int = 0,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {"attempts": attempts}
        if operation:
            details["operation"] = operation
        super().__init__(message, details, original_error)


class UpstreamTimeoutError(UpstreamError):
    """Raised when a processor call exceeds its time budget."""
    pass


class UpstreamUnavailableError(UpstreamError):
    """Raised when the processor stays unreachable after all retries."""
    pass


class ProcessorRequestError(AssistError):
    """Raised when the processor rejects a request (bad id, bad params)."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, details, original_error)


# =============================================================================
# Reconciliation
# =============================================================================

class UnresolvedCorrelationError(AssistError):
    """Raised when an event cannot be tied to any account. Dropped, not retried."""

    def __init__(
        self,
        message: str,
        event_id: Optional[str] = None,
        event_type: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if event_id:
            details["event_id"] = event_id
        if event_type:
            details["event_type"] = event_type
        super().__init__(message, details, original_error)


class DatabaseError(AssistError):
    """Raised when database operations fail. The whole event is retried."""

    retryable = True

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class PersistenceError(DatabaseError):
    """Raised when a record store write fails."""
    pass


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""

    retryable = False


class ConfigurationError(AssistError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)
