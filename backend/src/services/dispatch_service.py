"""
Scheduled notification dispatch.

Runs one batch of daily lunar event notifications:

1. Load enabled preferences with their push subscription
2. Match users whose notification time equals the run time
3. Per user (bounded worker pool): dedup check, event selection,
   claim, push delivery, state update, audit log
4. Aggregate a run summary

Per-user failures are isolated: they are counted and logged and the batch
moves on. Only a ConfigurationError (no delivery can succeed) aborts a run,
and it does so before any user is touched.
"""

import enum
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings
from backend.src.models.notification_log import DeliveryOutcome
from backend.src.models.notification_preference import NotificationPreference
from backend.src.models.push_subscription import PushSubscription
from backend.src.services.event_selector import (
    CategoryToggles,
    EventSelector,
    already_notified_today,
    build_push_payload,
    build_test_payload,
)
from backend.src.services.event_source import EventSource
from backend.src.services.exceptions import NotFoundError
from backend.src.services.notification_log_service import NotificationLogService
from backend.src.services.notification_state_service import (
    ClaimToken,
    NotificationStateService,
)
from backend.src.services.push_delivery_service import (
    DeliveryResult,
    SubscriptionInfo,
    WebPushClient,
)
from backend.src.services.time_window import (
    DispatchCandidate,
    format_match_time,
    match_due_preferences,
)
from backend.src.utils.logging_config import get_logger


logger = get_logger("scheduler")


class UserDispatchStatus(enum.Enum):
    """What happened to one matched user in a run."""
    SENT = "sent"
    FAILED_GONE = "failed_gone"
    FAILED_TRANSIENT = "failed_transient"
    ERROR = "error"
    SKIPPED_NO_SUBSCRIPTION = "skipped_no_subscription"
    SKIPPED_ALREADY_NOTIFIED = "skipped_already_notified"
    SKIPPED_NO_EVENTS = "skipped_no_events"
    SKIPPED_DEADLINE = "skipped_deadline"


FAILURE_STATUSES = {
    UserDispatchStatus.FAILED_GONE,
    UserDispatchStatus.FAILED_TRANSIENT,
    UserDispatchStatus.ERROR,
}

STATUS_BY_OUTCOME = {
    DeliveryOutcome.SUCCESS: UserDispatchStatus.SENT,
    DeliveryOutcome.GONE: UserDispatchStatus.FAILED_GONE,
    DeliveryOutcome.TRANSIENT: UserDispatchStatus.FAILED_TRANSIENT,
}


@dataclass
class DispatchSummary:
    """
    Aggregate result of one dispatch run.

    Attributes:
        processed: Users matched by the time window
        notifications_sent: Successful deliveries
        errors: Attempts ending in any failure, plus unexpected per-user errors
        skipped: Matched users with nothing to do (no subscription, already
            notified today, no events, or not started before the deadline)
        deadline_reached: True if some users were not started in time
        match_time: "HH:MM" the run matched on
        force: True if the time filter was bypassed
    """
    processed: int = 0
    notifications_sent: int = 0
    errors: int = 0
    skipped: int = 0
    deadline_reached: bool = False
    match_time: str = ""
    force: bool = False

    def add(self, status: UserDispatchStatus) -> None:
        if status == UserDispatchStatus.SENT:
            self.notifications_sent += 1
        elif status in FAILURE_STATUSES:
            self.errors += 1
        else:
            self.skipped += 1
            if status == UserDispatchStatus.SKIPPED_DEADLINE:
                self.deadline_reached = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ManualPushResult:
    """Outcome of a one-off test push to a single subscription."""
    user_id: int
    email: Optional[str]
    name: Optional[str]
    result: DeliveryResult
    subscription_removed: bool = False


class NotificationDispatchService:
    """
    Batch runner for scheduled lunar event notifications.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session; each
            worker uses its own session
        event_source: Where event occurrences come from
        delivery_client: Web Push client
        max_workers: Upper bound on concurrent per-user workers
        deadline_seconds: Wall-clock budget after which no new user is started
        lookahead_days: Days after today still treated as upcoming
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        event_source: EventSource,
        delivery_client: WebPushClient,
        max_workers: int = 8,
        deadline_seconds: float = 270.0,
        lookahead_days: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.selector = EventSelector(event_source, lookahead_days=lookahead_days)
        self.delivery_client = delivery_client
        self.max_workers = max(1, max_workers)
        self.deadline_seconds = deadline_seconds
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        session_factory: Callable[[], Session],
        event_source: EventSource,
        delivery_client: Optional[WebPushClient] = None,
    ) -> "NotificationDispatchService":
        return cls(
            session_factory=session_factory,
            event_source=event_source,
            delivery_client=delivery_client or WebPushClient.from_settings(settings),
            max_workers=settings.dispatch_max_workers,
            deadline_seconds=settings.dispatch_deadline_seconds,
            lookahead_days=settings.event_lookahead_days,
        )

    # ========================================================================
    # Run
    # ========================================================================

    def run(
        self,
        current_hour: int,
        current_minute: int,
        now: Optional[datetime] = None,
        force: bool = False,
    ) -> DispatchSummary:
        """
        Run one dispatch batch.

        Safe to call repeatedly and concurrently: a user is notified at most
        once per calendar day.

        Args:
            current_hour: Hour to match preferences on (0-23)
            current_minute: Minute to match preferences on (0-59)
            now: Run timestamp, server-local (defaults to datetime.now())
            force: Process every enabled user regardless of notification time

        Returns:
            DispatchSummary with processed, notifications_sent and errors

        Raises:
            ConfigurationError: If push delivery is not configured
            ValidationError: If hour or minute is out of range
        """
        match_time = format_match_time(current_hour, current_minute)
        self.delivery_client.ensure_configured()

        now = now or datetime.now()
        deadline = self._clock() + self.deadline_seconds
        summary = DispatchSummary(match_time=match_time, force=force)

        candidates = self.load_candidates()
        due = match_due_preferences(candidates, current_hour, current_minute, force=force)
        summary.processed = len(due)

        logger.info(
            "Dispatch run started",
            extra={
                "match_time": match_time,
                "force": force,
                "enabled_users": len(candidates),
                "matched_users": len(due),
            },
        )

        if due:
            workers = min(self.max_workers, len(due))
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="notify_dispatch"
            ) as executor:
                futures = {
                    executor.submit(self._process_candidate, candidate, now, deadline): candidate
                    for candidate in due
                }
                for future in as_completed(futures):
                    candidate = futures[future]
                    try:
                        status = future.result()
                    except Exception:
                        logger.exception(
                            "Unhandled error in dispatch worker",
                            extra={"user_id": candidate.user_id},
                        )
                        status = UserDispatchStatus.ERROR
                    summary.add(status)

        if summary.deadline_reached:
            logger.warning(
                "Dispatch deadline reached, remaining users deferred",
                extra={"deadline_seconds": self.deadline_seconds},
            )

        logger.info(
            "Dispatch run completed",
            extra={
                "match_time": match_time,
                "processed": summary.processed,
                "sent": summary.notifications_sent,
                "errors": summary.errors,
                "skipped": summary.skipped,
            },
        )
        return summary

    def load_candidates(self) -> List[DispatchCandidate]:
        """
        Load every enabled preference with its subscription as plain data.

        Returns:
            DispatchCandidate per enabled user
        """
        db = self.session_factory()
        try:
            rows = (
                db.query(NotificationPreference, PushSubscription)
                .outerjoin(
                    PushSubscription,
                    PushSubscription.user_id == NotificationPreference.user_id,
                )
                .filter(NotificationPreference.enabled.is_(True))
                .order_by(NotificationPreference.user_id)
                .all()
            )
            return [
                DispatchCandidate(
                    user_id=pref.user_id,
                    enabled=pref.enabled,
                    notification_time=pref.notification_time,
                    toggles=CategoryToggles.from_preference(pref),
                    last_notified_at=pref.last_notified_at,
                    badge_count=pref.badge_count or 0,
                    subscription=SubscriptionInfo.from_model(sub) if sub else None,
                )
                for pref, sub in rows
            ]
        finally:
            db.close()

    # ========================================================================
    # Test push
    # ========================================================================

    def send_test_push(
        self,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ManualPushResult:
        """
        Send a test push to one subscription, outside the daily schedule.

        Targets the given user's subscription, or the oldest stored
        subscription when no user is given. Dedup marker and badge count are
        left untouched; a 404/410 still removes the subscription, and the
        attempt is written to the audit log.

        Args:
            user_id: Recipient user's internal ID (optional)
            now: Attempt timestamp (defaults to datetime.now())

        Returns:
            ManualPushResult with the recipient and classified delivery result

        Raises:
            ConfigurationError: If push delivery is not configured
            NotFoundError: If there is no matching subscription
        """
        self.delivery_client.ensure_configured()
        now = now or datetime.now()

        db = self.session_factory()
        try:
            query = db.query(PushSubscription)
            if user_id is not None:
                subscription = query.filter(PushSubscription.user_id == user_id).first()
                if subscription is None:
                    raise NotFoundError("Push subscription for user", user_id)
            else:
                subscription = query.order_by(PushSubscription.id).first()
                if subscription is None:
                    raise NotFoundError("push subscription")

            recipient_id = subscription.user_id
            payload = build_test_payload(now)
            logger.info("Sending test push", extra={"user_id": recipient_id})
            result = self.delivery_client.deliver(
                SubscriptionInfo.from_model(subscription), payload
            )
            manual = ManualPushResult(
                user_id=recipient_id,
                email=subscription.user.email,
                name=subscription.user.name,
                result=result,
            )

            if result.outcome == DeliveryOutcome.GONE:
                state = NotificationStateService(db)
                manual.subscription_removed = state.remove_subscription(recipient_id) > 0

            NotificationLogService(db).record_attempt(
                user_id=recipient_id,
                result=result,
                events=[],
                payload=payload,
                sent_at=now,
            )
            return manual
        finally:
            db.close()

    # ========================================================================
    # Per-user processing
    # ========================================================================

    def _process_candidate(
        self, candidate: DispatchCandidate, now: datetime, deadline: float
    ) -> UserDispatchStatus:
        """Process one matched user. Never raises."""
        user_id = candidate.user_id

        if self._clock() >= deadline:
            return UserDispatchStatus.SKIPPED_DEADLINE

        if candidate.subscription is None:
            logger.debug("No push subscription, skipping", extra={"user_id": user_id})
            return UserDispatchStatus.SKIPPED_NO_SUBSCRIPTION

        today = now.date()
        if already_notified_today(candidate.last_notified_at, today):
            logger.debug("Already notified today, skipping", extra={"user_id": user_id})
            return UserDispatchStatus.SKIPPED_ALREADY_NOTIFIED

        try:
            events = self.selector.select(user_id, candidate.toggles, today)
        except Exception:
            logger.exception("Event selection failed", extra={"user_id": user_id})
            return UserDispatchStatus.ERROR

        if not events:
            return UserDispatchStatus.SKIPPED_NO_EVENTS

        db = self.session_factory()
        state = NotificationStateService(db)
        token: Optional[ClaimToken] = None
        try:
            try:
                token = state.claim(user_id, now)
                if token is None:
                    return UserDispatchStatus.SKIPPED_ALREADY_NOTIFIED

                payload = build_push_payload(
                    events, today, badge_count=candidate.badge_count + len(events)
                )
                result = self.delivery_client.deliver(candidate.subscription, payload)
            except Exception:
                logger.exception("Dispatch failed before delivery", extra={"user_id": user_id})
                db.rollback()
                if token is not None:
                    self._release_claim(state, token)
                return UserDispatchStatus.ERROR

            try:
                self._apply_outcome(state, token, result, len(events))
            except Exception:
                # Delivery outcome stands; a kept claim only means no retry today
                logger.exception(
                    "Failed to record delivery state",
                    extra={"user_id": user_id, "outcome": result.outcome.value},
                )
                db.rollback()

            NotificationLogService(db).record_attempt(
                user_id=user_id,
                result=result,
                events=events,
                payload=payload,
                sent_at=now,
            )

            if not result.success:
                logger.info(
                    "Notification not delivered",
                    extra={
                        "user_id": user_id,
                        "outcome": result.outcome.value,
                        "status_code": result.status_code,
                    },
                )
            return STATUS_BY_OUTCOME[result.outcome]
        finally:
            db.close()

    def _apply_outcome(
        self,
        state: NotificationStateService,
        token: ClaimToken,
        result: DeliveryResult,
        event_count: int,
    ) -> None:
        if result.outcome == DeliveryOutcome.SUCCESS:
            state.record_success(token, event_count)
        elif result.outcome == DeliveryOutcome.GONE:
            state.remove_subscription(token.user_id)
            state.release(token)
        else:
            state.release(token)

    def _release_claim(self, state: NotificationStateService, token: ClaimToken) -> None:
        try:
            state.release(token)
        except Exception:
            logger.exception(
                "Failed to release dispatch claim",
                extra={"user_id": token.user_id},
            )
