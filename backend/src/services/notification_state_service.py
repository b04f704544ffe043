"""
Notification state tracking for the dispatch engine.

Owns every write the engine makes to preference and subscription rows:

- claim/release of the per-day dedup marker (last_notified_at)
- badge increments after a successful send
- removal of subscriptions the push service reports as gone
- the user-facing clear-badge reset

All writes are single conditional UPDATE/DELETE statements so concurrent
runs and the clear-badge action never lose each other's changes.
"""

from dataclasses import dataclass
from datetime import datetime, time
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from backend.src.models.notification_preference import NotificationPreference
from backend.src.models.push_subscription import PushSubscription
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


@dataclass(frozen=True)
class ClaimToken:
    """
    Proof that this run reserved today's notification for a user.

    Attributes:
        user_id: User's internal ID
        claimed_at: Value written to last_notified_at by the claim
        previous: last_notified_at before the claim, restored on release
    """
    user_id: int
    claimed_at: datetime
    previous: Optional[datetime]


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


class NotificationStateService:
    """
    Service for dispatch state updates on preferences and subscriptions.

    Args:
        db: SQLAlchemy database session
    """

    def __init__(self, db: Session):
        self.db = db

    def claim(self, user_id: int, now: datetime) -> Optional[ClaimToken]:
        """
        Reserve today's notification for a user before delivery.

        Sets last_notified_at to now only if it is unset or earlier than the
        start of now's calendar day. A second run on the same day, even an
        overlapping one, finds no row to update.

        Args:
            user_id: User's internal ID
            now: Run timestamp

        Returns:
            ClaimToken, or None if the user was already notified or claimed today
        """
        previous = (
            self.db.query(NotificationPreference.last_notified_at)
            .filter(NotificationPreference.user_id == user_id)
            .scalar()
        )

        updated = (
            self.db.query(NotificationPreference)
            .filter(
                NotificationPreference.user_id == user_id,
                NotificationPreference.enabled.is_(True),
                or_(
                    NotificationPreference.last_notified_at.is_(None),
                    NotificationPreference.last_notified_at < start_of_day(now),
                ),
            )
            .update({"last_notified_at": now}, synchronize_session="fetch")
        )
        self.db.commit()

        if not updated:
            logger.debug("Claim rejected, already notified today", extra={"user_id": user_id})
            return None

        return ClaimToken(user_id=user_id, claimed_at=now, previous=previous)

    def release(self, token: ClaimToken) -> bool:
        """
        Undo a claim after a failed delivery.

        Restores the previous last_notified_at only while the row still
        holds this claim, so the next scheduled run retries the user.

        Returns:
            True if the claim was released
        """
        updated = (
            self.db.query(NotificationPreference)
            .filter(
                NotificationPreference.user_id == token.user_id,
                NotificationPreference.last_notified_at == token.claimed_at,
            )
            .update({"last_notified_at": token.previous}, synchronize_session="fetch")
        )
        self.db.commit()
        return bool(updated)

    def record_success(self, token: ClaimToken, event_count: int) -> None:
        """
        Apply the state change for a delivered notification.

        Increments badge_count in SQL (never a read-modify-write) and keeps
        last_notified_at at the claim time, never moving it backwards.

        Args:
            token: Claim made before delivery
            event_count: Number of events included in the message
        """
        self.db.query(NotificationPreference).filter(
            NotificationPreference.user_id == token.user_id,
        ).update(
            {"badge_count": NotificationPreference.badge_count + event_count},
            synchronize_session="fetch",
        )
        self.db.query(NotificationPreference).filter(
            NotificationPreference.user_id == token.user_id,
            or_(
                NotificationPreference.last_notified_at.is_(None),
                NotificationPreference.last_notified_at < token.claimed_at,
            ),
        ).update({"last_notified_at": token.claimed_at}, synchronize_session="fetch")
        self.db.query(PushSubscription).filter(
            PushSubscription.user_id == token.user_id,
        ).update({"last_used_at": token.claimed_at}, synchronize_session="fetch")
        self.db.commit()

        logger.debug(
            "Recorded successful notification",
            extra={"user_id": token.user_id, "event_count": event_count},
        )

    def remove_subscription(self, user_id: int) -> int:
        """
        Delete a user's push subscription after a 404/410 from the push service.

        The preference row is left untouched (still enabled) so the user
        is picked up again once they re-subscribe.

        Returns:
            Number of subscriptions removed
        """
        removed = (
            self.db.query(PushSubscription)
            .filter(PushSubscription.user_id == user_id)
            .delete(synchronize_session="fetch")
        )
        self.db.commit()

        if removed:
            logger.info("Removed expired push subscription", extra={"user_id": user_id})
        return removed

    def clear_badge(self, user_id: int) -> bool:
        """
        Reset a user's badge count to zero.

        Returns:
            True if a preference row was updated
        """
        updated = (
            self.db.query(NotificationPreference)
            .filter(NotificationPreference.user_id == user_id)
            .update({"badge_count": 0}, synchronize_session="fetch")
        )
        self.db.commit()
        return bool(updated)
