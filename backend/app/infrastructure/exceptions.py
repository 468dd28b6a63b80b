"""
Custom Exceptions for the Billing Service

Hierarchical exception classes for proper error handling across layers.
Every error knows how to render itself in the checkout wire shape
``{error, stage?, hint?, details?}``.
"""

from typing import Optional, Dict, Any


class BillingServiceError(Exception):
    """Base exception for all billing service errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
        stage: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        self.stage = stage
        self.hint = hint

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        payload: Dict[str, Any] = {"error": self.message}
        if self.stage:
            payload["stage"] = self.stage
        if self.hint:
            payload["hint"] = self.hint
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BillingServiceError):
    """Raised when input validation fails."""
    pass


class PermissionDeniedError(BillingServiceError):
    """Raised when the caller may not act on the requested tenant."""
    pass


class WebhookAuthenticationError(BillingServiceError):
    """Raised when a gateway notification fails shared-secret verification."""
    pass


class DatabaseError(BillingServiceError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None,
        stage: Optional[str] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error, stage=stage)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class ConfigurationError(BillingServiceError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None,
        stage: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error, stage=stage, hint=hint)
        self.missing_keys = list(missing_keys or [])


# Gateway answers that mean "already canceled / already gone".
BENIGN_CANCEL_STATUSES = frozenset({400, 404, 409})


class GatewayError(BillingServiceError):
    """
    Raised when the payment gateway rejects a call or cannot be reached.

    Carries the pipeline stage plus the provider's own error code and
    description so an operator can diagnose without reading logs.
    """

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        status_code: int = 0,
        code: Optional[Any] = None,
        description: Optional[Any] = None,
        raw: Optional[Any] = None,
        original_error: Optional[Exception] = None,
        hint: Optional[str] = None,
    ):
        details: Dict[str, Any] = {"status": status_code}
        if code is not None:
            details["code"] = code
        if description is not None:
            details["error_description"] = description
        if raw is not None:
            details["data"] = raw
        super().__init__(message, details, original_error, stage=stage, hint=hint)
        self.status_code = status_code
        self.code = code
        self.description = description
        self.raw = raw

    @property
    def is_benign(self) -> bool:
        """True when a cancel failure means the subscription is already gone."""
        return self.status_code in BENIGN_CANCEL_STATUSES


# Most specific class first.
HTTP_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (WebhookAuthenticationError, 401),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (GatewayError, 502),
    (ConfigurationError, 500),
    (DatabaseError, 500),
)


def status_code_for(error: BillingServiceError) -> int:
    """HTTP status an API response should use for a service error."""
    for error_class, status_code in HTTP_STATUS_BY_ERROR:
        if isinstance(error, error_class):
            return status_code
    return 500
