"""
Event selection and push payload construction for one due user.

Given a user's category toggles, asks the event source for occurrences
inside the lookahead window, drops disabled categories, and turns the
result into a Web Push payload. An empty selection means "nothing to
send" for this run, which is a normal outcome.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from backend.src.models.event_occurrence import EventCategory
from backend.src.services.event_source import CalendarEvent, EventSource, LookaheadWindow
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


TITLE_MAX_LENGTH = 200
BODY_MAX_LENGTH = 500

PAYLOAD_ICON = "/icon-192x192.png"
PAYLOAD_BADGE = "/badge-72x72.png"
PAYLOAD_TAG = "lunar-event"

TEST_PUSH_TITLE = "🧪 Test Push Notification"
TEST_PUSH_TAG = "test-notification"

CATEGORY_TITLE_PREFIX = {
    EventCategory.PERSONAL: "📅",
    EventCategory.SHARED: "🤝",
    EventCategory.SYSTEM: "🌕",
    EventCategory.ANCESTOR: "🕯️",
}

CATEGORY_URL = {
    EventCategory.PERSONAL: "/events",
    EventCategory.SHARED: "/events/shared",
    EventCategory.SYSTEM: "/calendar",
    EventCategory.ANCESTOR: "/events",
}


@dataclass(frozen=True)
class CategoryToggles:
    """Per-category notification switches from NotificationPreference."""
    personal_events: bool = True
    shared_events: bool = True
    system_events: bool = True
    ancestor_worship_events: bool = True

    @classmethod
    def from_preference(cls, preference: Any) -> "CategoryToggles":
        return cls(
            personal_events=bool(preference.personal_events),
            shared_events=bool(preference.shared_events),
            system_events=bool(preference.system_events),
            ancestor_worship_events=bool(preference.ancestor_worship_events),
        )

    def enabled_categories(self) -> Set[EventCategory]:
        enabled = set()
        if self.personal_events:
            enabled.add(EventCategory.PERSONAL)
        if self.shared_events:
            enabled.add(EventCategory.SHARED)
        if self.system_events:
            enabled.add(EventCategory.SYSTEM)
        if self.ancestor_worship_events:
            enabled.add(EventCategory.ANCESTOR)
        return enabled


def already_notified_today(last_notified_at: Optional[datetime], today: date) -> bool:
    """
    Check the per-day dedup marker.

    Compares calendar dates, not timestamps, so a delayed or repeated run
    later the same day is still recognized.
    """
    return last_notified_at is not None and last_notified_at.date() >= today


class EventSelector:
    """
    Selects notification-worthy events for a user.

    Args:
        event_source: Where occurrences come from
        lookahead_days: Extra days after today to include (0 = today only)
    """

    def __init__(self, event_source: EventSource, lookahead_days: int = 0):
        self.event_source = event_source
        self.lookahead_days = lookahead_days

    def select(
        self,
        user_id: int,
        toggles: CategoryToggles,
        today: date,
    ) -> List[CalendarEvent]:
        """
        Get the events a user should be notified about today.

        Args:
            user_id: Recipient user's internal ID
            toggles: The user's category toggles
            today: Calendar day of the dispatch run

        Returns:
            Events ordered by date then title; empty when there is nothing to send
        """
        categories = toggles.enabled_categories()
        if not categories:
            logger.debug("All categories disabled", extra={"user_id": user_id})
            return []

        window = LookaheadWindow(start=today, days=self.lookahead_days)
        events = self.event_source.get_upcoming_events(user_id, categories, window)

        # The source may be coarser than the toggles; filter again here
        selected = [
            event for event in events
            if event.category in categories and window.contains(event.date)
        ]
        selected.sort(key=lambda e: (e.date, e.title))

        if len(selected) != len(events):
            logger.debug(
                "Dropped events outside toggles or window",
                extra={
                    "user_id": user_id,
                    "returned": len(events),
                    "selected": len(selected),
                },
            )
        return selected


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def _event_heading(event: CalendarEvent) -> str:
    if event.category == EventCategory.ANCESTOR and event.ancestor_name:
        name = " ".join(p for p in (event.ancestor_precall, event.ancestor_name) if p)
        return f"Giỗ {name}"
    return event.title


def _when_text(event: CalendarEvent, today: date) -> str:
    days = (event.date - today).days
    if days <= 0:
        text = "Hôm nay"
    elif days == 1:
        text = "Ngày mai"
    else:
        text = f"Còn {days} ngày"
    if event.lunar_label:
        text += f" ({event.lunar_label} Âm lịch)"
    return text


def _single_event_body(event: CalendarEvent, today: date) -> str:
    body = _when_text(event, today)
    if event.category == EventCategory.SHARED and event.owner_name:
        body = f"Từ {event.owner_name}: {body}"
    if event.category == EventCategory.ANCESTOR and event.ancestor_name and event.title:
        body = f"{event.title} - {body}"
    return body


def build_push_payload(
    events: Sequence[CalendarEvent],
    today: date,
    badge_count: int = 0,
) -> Dict[str, Any]:
    """
    Build the Web Push payload summarizing the selected events.

    Args:
        events: Selected events (must not be empty)
        today: Calendar day of the dispatch run
        badge_count: Badge value the client should show after this message

    Returns:
        JSON-serializable payload consumed by the service worker

    Raises:
        ValueError: If events is empty
    """
    if not events:
        raise ValueError("Cannot build a push payload without events")

    if len(events) == 1:
        event = events[0]
        title = f"{CATEGORY_TITLE_PREFIX[event.category]} {_event_heading(event)}"
        body = _single_event_body(event, today)
        url = CATEGORY_URL[event.category]
    else:
        title = f"🔔 Bạn có {len(events)} sự kiện sắp tới"
        body = "; ".join(
            f"{_event_heading(e)} ({_when_text(e, today).lower()})" for e in events
        )
        urls = {CATEGORY_URL[e.category] for e in events}
        url = urls.pop() if len(urls) == 1 else "/events"

    return {
        "title": _truncate(title, TITLE_MAX_LENGTH),
        "body": _truncate(body, BODY_MAX_LENGTH),
        "icon": PAYLOAD_ICON,
        "badge": PAYLOAD_BADGE,
        "tag": PAYLOAD_TAG,
        "requireInteraction": True,
        "data": {
            "url": url,
            "eventIds": [e.id for e in events],
            "badgeCount": badge_count,
        },
    }


def build_test_payload(now: datetime) -> Dict[str, Any]:
    """Payload for a manual test push; carries no events and no badge."""
    return {
        "title": TEST_PUSH_TITLE,
        "body": f"Thông báo thử nghiệm gửi lúc {now.strftime('%H:%M:%S %d/%m/%Y')}",
        "icon": PAYLOAD_ICON,
        "badge": PAYLOAD_BADGE,
        "tag": TEST_PUSH_TAG,
        "requireInteraction": False,
        "data": {"url": "/"},
    }
