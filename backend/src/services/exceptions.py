"""
Custom exceptions for service layer.

Provides specific exception types for business logic errors
that can be translated to appropriate HTTP responses or exit codes.
"""

from typing import Any, Optional


class ServiceError(Exception):
    """Base exception for service layer errors."""
    pass


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: Any = None):
        self.resource = resource
        self.identifier = identifier
        if identifier is None:
            super().__init__(f"No {resource} found")
        else:
            super().__init__(f"{resource} {identifier} not found")


class ValidationError(ServiceError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class ConfigurationError(ServiceError):
    """Raised when a whole dispatch run cannot proceed (e.g. missing VAPID keys).

    Fatal for the run: raised before any user is processed so callers can
    tell it apart from a run that completed and sent nothing.
    """

    def __init__(self, message: str, setting: Optional[str] = None):
        self.message = message
        self.setting = setting
        super().__init__(message)


# ============================================================================
# Push Delivery Exceptions
# ============================================================================


class PushGoneError(ServiceError):
    """Raised when push service returns 404/410 (subscription invalid)."""

    def __init__(self, endpoint: str, status_code: int = 410):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(f"Push subscription gone ({status_code}): {endpoint[:60]}")


class PushDeliveryError(ServiceError):
    """Raised when push delivery fails for a retryable reason."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)
