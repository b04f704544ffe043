"""
Audit logging of push delivery attempts.

Appends one NotificationLog row per delivery attempt and exposes the
read side used for diagnostics ("why didn't user X get notified?").
Writing the audit row is best-effort: a failure here is logged and
swallowed so it can never undo a push that already went out.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.src.models.notification_log import NotificationLog
from backend.src.models.notification_preference import NotificationPreference
from backend.src.models.push_subscription import PushSubscription
from backend.src.services.event_source import CalendarEvent
from backend.src.services.notification_state_service import start_of_day
from backend.src.services.push_delivery_service import DeliveryResult
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


class NotificationLogService:
    """
    Service for the notification audit trail.

    Args:
        db: SQLAlchemy database session
    """

    def __init__(self, db: Session):
        self.db = db

    def record_attempt(
        self,
        user_id: int,
        result: DeliveryResult,
        events: Sequence[CalendarEvent],
        payload: Dict[str, Any],
        sent_at: Optional[datetime] = None,
    ) -> Optional[NotificationLog]:
        """
        Append the audit row for one delivery attempt.

        Args:
            user_id: Recipient user's internal ID
            result: Classified delivery result
            events: Events included in the message
            payload: Push payload that was sent
            sent_at: Attempt timestamp (defaults to now)

        Returns:
            Created NotificationLog, or None if the write failed
        """
        entry = NotificationLog(
            user_id=user_id,
            sent_at=sent_at or datetime.now(),
            success=result.success,
            outcome=result.outcome.value,
            status_code=result.status_code,
            error=result.error,
            event_ids=[e.id for e in events],
            categories=sorted({e.category.value for e in events}),
            title=str(payload.get("title", ""))[:200],
            body=str(payload.get("body", ""))[:500],
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(
                "Failed to write notification log",
                extra={"user_id": user_id, "outcome": result.outcome.value},
            )
            return None

        return entry

    def list_for_user(self, user_id: int, limit: int = 50) -> List[NotificationLog]:
        """Most recent delivery attempts for a user, newest first."""
        return (
            self.db.query(NotificationLog)
            .filter(NotificationLog.user_id == user_id)
            .order_by(NotificationLog.sent_at.desc(), NotificationLog.id.desc())
            .limit(limit)
            .all()
        )

    def recent(self, limit: int = 20) -> List[NotificationLog]:
        """Most recent delivery attempts across all users, newest first."""
        return (
            self.db.query(NotificationLog)
            .order_by(NotificationLog.sent_at.desc(), NotificationLog.id.desc())
            .limit(limit)
            .all()
        )

    def get_dispatch_status(self, now: datetime) -> Dict[str, int]:
        """
        Counters describing who the next run can reach.

        Returns:
            Dict with enabled_users, users_with_subscription,
            users_notified_today and failed_attempts_today
        """
        today_start = start_of_day(now)

        enabled_users = (
            self.db.query(func.count(NotificationPreference.id))
            .filter(NotificationPreference.enabled.is_(True))
            .scalar()
        )
        users_with_subscription = (
            self.db.query(func.count(NotificationPreference.id))
            .join(
                PushSubscription,
                PushSubscription.user_id == NotificationPreference.user_id,
            )
            .filter(NotificationPreference.enabled.is_(True))
            .scalar()
        )
        users_notified_today = (
            self.db.query(func.count(NotificationPreference.id))
            .filter(NotificationPreference.last_notified_at >= today_start)
            .scalar()
        )
        failed_attempts_today = (
            self.db.query(func.count(NotificationLog.id))
            .filter(
                NotificationLog.sent_at >= today_start,
                NotificationLog.success.is_(False),
            )
            .scalar()
        )

        return {
            "enabled_users": enabled_users or 0,
            "users_with_subscription": users_with_subscription or 0,
            "users_notified_today": users_notified_today or 0,
            "failed_attempts_today": failed_attempts_today or 0,
        }
