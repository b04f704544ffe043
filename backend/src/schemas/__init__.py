"""
Pydantic schemas for API request/response validation.

This module exports all schema classes for use in API endpoints.
"""

from backend.src.schemas.notifications import (
    DispatchRunResponse,
    DispatchErrorResponse,
    NotificationLogResponse,
    DispatchStatusResponse,
    PushRecipientResponse,
    ManualPushResponse,
    VapidNotConfiguredResponse,
)

__all__ = [
    "DispatchRunResponse",
    "DispatchErrorResponse",
    "NotificationLogResponse",
    "DispatchStatusResponse",
    "PushRecipientResponse",
    "ManualPushResponse",
    "VapidNotConfiguredResponse",
]
