"""
SQLAlchemy models for the Am Lich notification backend.

This module provides the declarative base class and imports all models
to ensure they are registered with SQLAlchemy's metadata.
"""

from sqlalchemy.orm import declarative_base

# Create the declarative base class
# All models will inherit from this Base class
Base = declarative_base()


# Import all models here so they are registered with Base.metadata
# This is required for Alembic autogenerate to detect models
from backend.src.models.user import User
from backend.src.models.notification_preference import NotificationPreference
from backend.src.models.push_subscription import PushSubscription
from backend.src.models.event_occurrence import EventOccurrence, EventCategory
from backend.src.models.notification_log import NotificationLog, DeliveryOutcome

__all__ = [
    "Base",
    "User",
    "NotificationPreference",
    "PushSubscription",
    "EventOccurrence",
    "EventCategory",
    "NotificationLog",
    "DeliveryOutcome",
]
