"""
EventOccurrence model for calendar events resolved to a Gregorian date.

The lunar calendar resolver (outside this backend) expands each personal,
shared, system and ancestor-worship event into concrete occurrence rows.
The dispatch engine only reads them; it performs no calendar math.
"""

import enum
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from backend.src.models import Base


class EventCategory(enum.Enum):
    """
    Notification category of an event occurrence.

    Each category maps to one toggle on NotificationPreference.
    """
    PERSONAL = "personal"  # User's own events
    SHARED = "shared"      # Events another user shared with this user
    SYSTEM = "system"      # Mong 1 / Ram, visible to everyone
    ANCESTOR = "ancestor"  # Death anniversaries (gio)


class EventOccurrence(Base):
    """
    One dated occurrence of a calendar event, as seen by one recipient.

    Attributes:
        user_id: Recipient user, NULL for system events visible to all users
        source_event_id: Identifier of the originating event record
        category: EventCategory value
        title: Event title
        occurrence_date: Gregorian date the event occurs on
        event_type: Free-form type from the event editor (e.g. "birthday")
        ancestor_name: Name of the ancestor (ancestor events)
        ancestor_precall: Honorific used when addressing the ancestor
        owner_name: Display name of the sharing user (shared events)
        lunar_label: Pre-formatted lunar date text, e.g. "15/8 Giap Thin"
    """

    __tablename__ = "event_occurrences"

    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    source_event_id = Column(String(64), nullable=True)

    category = Column(String(20), nullable=False)
    title = Column(String(200), nullable=False)
    occurrence_date = Column(Date, nullable=False)
    event_type = Column(String(50), nullable=True)

    ancestor_name = Column(String(200), nullable=True)
    ancestor_precall = Column(String(100), nullable=True)
    owner_name = Column(String(255), nullable=True)
    lunar_label = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User")

    __table_args__ = (
        Index("ix_event_occurrences_date_category", "occurrence_date", "category"),
    )

    @property
    def category_enum(self) -> EventCategory:
        """Category as EventCategory."""
        return EventCategory(self.category)
