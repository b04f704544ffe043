"""
Service layer for the notification dispatch engine.

This module exports the service classes used by the cron API and scripts.
"""

from backend.src.services.dispatch_service import (
    DispatchSummary,
    NotificationDispatchService,
    UserDispatchStatus,
)
from backend.src.services.event_selector import CategoryToggles, EventSelector
from backend.src.services.event_source import (
    CalendarEvent,
    EventSource,
    LookaheadWindow,
    StaticEventSource,
    StoredEventSource,
)
from backend.src.services.exceptions import (
    ServiceError,
    ValidationError,
    ConfigurationError,
    PushGoneError,
    PushDeliveryError,
)
from backend.src.services.notification_log_service import NotificationLogService
from backend.src.services.notification_state_service import NotificationStateService
from backend.src.services.push_delivery_service import (
    DeliveryResult,
    SubscriptionInfo,
    WebPushClient,
)

__all__ = [
    "DispatchSummary",
    "NotificationDispatchService",
    "UserDispatchStatus",
    "CategoryToggles",
    "EventSelector",
    "CalendarEvent",
    "EventSource",
    "LookaheadWindow",
    "StaticEventSource",
    "StoredEventSource",
    "ServiceError",
    "ValidationError",
    "ConfigurationError",
    "PushGoneError",
    "PushDeliveryError",
    "NotificationLogService",
    "NotificationStateService",
    "DeliveryResult",
    "SubscriptionInfo",
    "WebPushClient",
]
