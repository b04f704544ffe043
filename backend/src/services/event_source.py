"""
Event sources for the notification dispatch engine.

An event source answers one question: which calendar events does a user
have, in the given categories, inside a date window? Occurrences are
already resolved to Gregorian dates by the lunar calendar resolver; no
calendar math happens here.

Implementations:
- StoredEventSource: reads the event_occurrences table
- StaticEventSource: serves a fixed in-memory list (scripts, tests)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional, Set

from sqlalchemy import or_
from sqlalchemy.orm import Session

from backend.src.models.event_occurrence import EventCategory, EventOccurrence


@dataclass(frozen=True)
class LookaheadWindow:
    """
    Inclusive date window [start, start + days].

    Attributes:
        start: First day of the window (the dispatch run's "today")
        days: Extra days after start; 0 means "occurs today"
    """
    start: date
    days: int = 0

    @property
    def end(self) -> date:
        return self.start + timedelta(days=self.days)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class CalendarEvent:
    """
    A notification-worthy event occurrence, detached from any session.

    Attributes:
        id: Occurrence identifier (string so in-memory and stored ids mix)
        title: Event title
        date: Gregorian occurrence date
        category: EventCategory
        event_type: Free-form event type
        ancestor_name: Ancestor's name (ancestor events)
        ancestor_precall: Honorific for the ancestor
        owner_name: Who shared the event (shared events)
        lunar_label: Pre-formatted lunar date text
    """
    id: str
    title: str
    date: date
    category: EventCategory
    event_type: Optional[str] = None
    ancestor_name: Optional[str] = None
    ancestor_precall: Optional[str] = None
    owner_name: Optional[str] = None
    lunar_label: Optional[str] = None

    @classmethod
    def from_occurrence(cls, occurrence: EventOccurrence) -> "CalendarEvent":
        """Build from an EventOccurrence row."""
        return cls(
            id=str(occurrence.id),
            title=occurrence.title,
            date=occurrence.occurrence_date,
            category=EventCategory(occurrence.category),
            event_type=occurrence.event_type,
            ancestor_name=occurrence.ancestor_name,
            ancestor_precall=occurrence.ancestor_precall,
            owner_name=occurrence.owner_name,
            lunar_label=occurrence.lunar_label,
        )


class EventSource(ABC):
    """Supplies resolved event occurrences for a user and date window."""

    @abstractmethod
    def get_upcoming_events(
        self,
        user_id: int,
        categories: Set[EventCategory],
        window: LookaheadWindow,
    ) -> List[CalendarEvent]:
        """
        Get events for a user occurring inside the window.

        Args:
            user_id: Recipient user's internal ID
            categories: Categories to include
            window: Inclusive date window

        Returns:
            Events in the requested categories and window
        """


class StoredEventSource(EventSource):
    """
    Event source backed by the event_occurrences table.

    Opens a short-lived session per query so it can be shared by the
    dispatch worker threads.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get_upcoming_events(
        self,
        user_id: int,
        categories: Set[EventCategory],
        window: LookaheadWindow,
    ) -> List[CalendarEvent]:
        if not categories:
            return []

        db: Session = self.session_factory()
        try:
            rows = (
                db.query(EventOccurrence)
                .filter(
                    EventOccurrence.category.in_([c.value for c in categories]),
                    EventOccurrence.occurrence_date >= window.start,
                    EventOccurrence.occurrence_date <= window.end,
                    # System events have no recipient and apply to everyone
                    or_(
                        EventOccurrence.user_id == user_id,
                        EventOccurrence.user_id.is_(None),
                    ),
                )
                .order_by(EventOccurrence.occurrence_date, EventOccurrence.id)
                .all()
            )
            return [CalendarEvent.from_occurrence(row) for row in rows]
        finally:
            db.close()


class StaticEventSource(EventSource):
    """
    Event source over a fixed set of events.

    Events keyed to user_id None are visible to every user, matching how
    system events are stored.

    Args:
        events_by_user: Mapping of user_id (or None) to events
    """

    def __init__(self, events_by_user: Optional[dict] = None):
        self.events_by_user = dict(events_by_user or {})

    def add(self, user_id: Optional[int], events: Iterable[CalendarEvent]) -> None:
        self.events_by_user.setdefault(user_id, []).extend(events)

    def get_upcoming_events(
        self,
        user_id: int,
        categories: Set[EventCategory],
        window: LookaheadWindow,
    ) -> List[CalendarEvent]:
        candidates = list(self.events_by_user.get(user_id, [])) + list(
            self.events_by_user.get(None, [])
        )
        return [
            event
            for event in candidates
            if event.category in categories and window.contains(event.date)
        ]
