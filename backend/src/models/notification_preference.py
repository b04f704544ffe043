"""
NotificationPreference model for per-user dispatch settings.

One row per user. Holds the master toggle, the daily notification time,
per-category toggles, and the two fields the dispatch engine writes back:
last_notified_at (per-day dedup marker) and badge_count.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from backend.src.models import Base


DEFAULT_NOTIFICATION_TIME = "08:00"


class NotificationPreference(Base):
    """
    Notification preferences for a single user.

    Attributes:
        user_id: Owning user (unique, one preference row per user)
        enabled: Master toggle
        notification_time: "HH:MM" in server-local time
        personal_events: Notify about the user's own events
        shared_events: Notify about events other users shared with this user
        system_events: Notify about Mong 1 / Ram (lunar day 1 and 15)
        ancestor_worship_events: Notify about death anniversaries
        last_notified_at: Time of the last successful send (or of an in-flight claim)
        badge_count: Unseen notification count, reset by the clear-badge action

    Lifecycle:
        Created/updated by subscription management. The dispatch engine only
        writes last_notified_at and badge_count. Survives subscription deletion.
    """

    __tablename__ = "notification_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    enabled = Column(Boolean, nullable=False, default=True)
    notification_time = Column(String(8), nullable=False, default=DEFAULT_NOTIFICATION_TIME)

    # Category toggles
    personal_events = Column(Boolean, nullable=False, default=True)
    shared_events = Column(Boolean, nullable=False, default=True)
    system_events = Column(Boolean, nullable=False, default=True)
    ancestor_worship_events = Column(Boolean, nullable=False, default=True)

    # Written by the dispatch engine
    last_notified_at = Column(DateTime, nullable=True)
    badge_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    user = relationship("User", back_populates="notification_preference")

    __table_args__ = (
        CheckConstraint("badge_count >= 0", name="ck_notification_preferences_badge_nonneg"),
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationPreference(user_id={self.user_id}, enabled={self.enabled}, "
            f"time='{self.notification_time}')>"
        )
