"""
Time-window matching for scheduled notification runs.

Selects, from already-loaded preference data, the users whose configured
notification time equals the run's (hour, minute). Pure functions only:
no database access and no clock reads.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from backend.src.services.event_selector import CategoryToggles
from backend.src.services.exceptions import ValidationError
from backend.src.services.push_delivery_service import SubscriptionInfo


_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2}(?:\.\d+)?)?\s*$")


@dataclass(frozen=True)
class DispatchCandidate:
    """
    Snapshot of one user's preference row and subscription.

    Attributes:
        user_id: User's internal ID
        enabled: Master notification toggle
        notification_time: Configured "HH:MM"
        toggles: Category toggles
        last_notified_at: Last successful send (per-day dedup marker)
        badge_count: Badge value at load time
        subscription: Push subscription, None if the user has none
    """
    user_id: int
    enabled: bool
    notification_time: str
    toggles: CategoryToggles = field(default_factory=CategoryToggles)
    last_notified_at: Optional[datetime] = None
    badge_count: int = 0
    subscription: Optional[SubscriptionInfo] = None


def format_match_time(hour: int, minute: int) -> str:
    """
    Format a run's (hour, minute) as the "HH:MM" key preferences are matched on.

    Raises:
        ValidationError: If hour or minute is out of range
    """
    if not 0 <= hour <= 23:
        raise ValidationError(f"Hour must be 0-23, got {hour}", field="hour")
    if not 0 <= minute <= 59:
        raise ValidationError(f"Minute must be 0-59, got {minute}", field="minute")
    return f"{hour:02d}:{minute:02d}"


def normalize_notification_time(value: Optional[str]) -> Optional[str]:
    """
    Truncate a stored time to the minute as "HH:MM".

    Accepts "8:00", "08:00" and "08:00:00". Returns None for anything that
    is not a valid time of day, so malformed rows never match.
    """
    if not value:
        return None
    match = _TIME_RE.match(value)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def match_due_preferences(
    candidates: Iterable[DispatchCandidate],
    hour: int,
    minute: int,
    force: bool = False,
) -> List[DispatchCandidate]:
    """
    Select enabled candidates whose notification time equals the run time.

    Args:
        candidates: Loaded preference snapshots
        hour: Run hour (0-23)
        minute: Run minute (0-59)
        force: Match every enabled candidate regardless of time

    Returns:
        Matching candidates in input order
    """
    match_time = format_match_time(hour, minute)
    due = []
    for candidate in candidates:
        if not candidate.enabled:
            continue
        if force or normalize_notification_time(candidate.notification_time) == match_time:
            due.append(candidate)
    return due
