"""
Unit tests for NotificationDispatchService.

Runs whole dispatch batches against the test database with pywebpush
mocked. Tests matching, same-day idempotence, category filtering,
failure isolation, subscription cleanup, deadline handling and the
configuration check, concurrent runs against a file database and the
test push.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from freezegun import freeze_time
from pywebpush import WebPushException
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from backend.src.models import Base, User
from backend.src.models.event_occurrence import EventCategory
from backend.src.models.notification_log import NotificationLog
from backend.src.models.notification_preference import NotificationPreference
from backend.src.models.push_subscription import PushSubscription
from backend.src.services.dispatch_service import (
    DispatchSummary,
    NotificationDispatchService,
    UserDispatchStatus,
)
from backend.src.services.event_source import StaticEventSource, StoredEventSource
from backend.src.services.exceptions import ConfigurationError, NotFoundError, ValidationError
from backend.src.services.push_delivery_service import WebPushClient


TODAY = date(2026, 2, 12)
NOW = datetime(2026, 2, 12, 8, 0, 3)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def delivery_client():
    return WebPushClient(
        vapid_private_key="test-private-key",
        vapid_claims={"sub": "mailto:test@example.com"},
    )


@pytest.fixture
def event_source():
    return StaticEventSource()


@pytest.fixture
def dispatch_service(test_session_factory, event_source, delivery_client):
    """Dispatch service with one worker; SQLite shares one connection."""
    return NotificationDispatchService(
        session_factory=test_session_factory,
        event_source=event_source,
        delivery_client=delivery_client,
        max_workers=1,
    )


def _preference(db, user_id):
    db.expire_all()
    return (
        db.query(NotificationPreference)
        .filter(NotificationPreference.user_id == user_id)
        .one()
    )


def _logs(db, user_id):
    db.expire_all()
    return db.query(NotificationLog).filter(NotificationLog.user_id == user_id).all()


def _push_error(status_code):
    return WebPushException(
        f"Push failed: {status_code}", response=MagicMock(status_code=status_code)
    )


# ============================================================================
# Test: matching
# ============================================================================


class TestMatching:
    """Tests for which users a run processes."""

    def test_only_exact_minute_processed(
        self, dispatch_service, event_source, notifiable_user, make_event, mock_webpush
    ):
        user_a = notifiable_user(notification_time="08:00")
        user_b = notifiable_user(notification_time="09:00")
        user_c = notifiable_user(notification_time="08:01")
        for user in (user_a, user_b, user_c):
            event_source.add(user.id, [make_event()])

        summary = dispatch_service.run(8, 0, now=NOW)

        assert summary.processed == 1
        assert summary.notifications_sent == 1
        assert mock_webpush.call_count == 1
        assert mock_webpush.call_args.kwargs["subscription_info"]["endpoint"].endswith(
            f"/{user_a.id}"
        )

    def test_disabled_user_never_processed(
        self, dispatch_service, event_source, notifiable_user, make_event, mock_webpush
    ):
        user = notifiable_user(enabled=False)
        event_source.add(user.id, [make_event()])

        summary = dispatch_service.run(8, 0, now=NOW)
        forced = dispatch_service.run(8, 0, now=NOW, force=True)

        assert summary.processed == 0
        assert forced.processed == 0
        mock_webpush.assert_not_called()

    def test_force_ignores_notification_time(
        self, dispatch_service, event_source, notifiable_user, make_event, mock_webpush
    ):
        for time_str in ("06:30", "21:00"):
            user = notifiable_user(notification_time=time_str)
            event_source.add(user.id, [make_event()])

        summary = dispatch_service.run(12, 0, now=NOW, force=True)

        assert summary.processed == 2
        assert summary.notifications_sent == 2
        assert summary.force is True

    def test_user_without_subscription_skipped(
        self, dispatch_service, event_source, create_user, create_preference,
        make_event, mock_webpush,
    ):
        user = create_user()
        create_preference(user)
        event_source.add(user.id, [make_event()])

        summary = dispatch_service.run(8, 0, now=NOW)

        assert summary.processed == 1
        assert summary.skipped == 1
        assert summary.errors == 0
        mock_webpush.assert_not_called()

    def test_invalid_run_time(self, dispatch_service):
        with pytest.raises(ValidationError):
            dispatch_service.run(24, 0, now=NOW)


# ============================================================================
# Test: example scenarios
# ============================================================================


class TestScenarios:
    """End-to-end batch scenarios."""

    def test_send_then_rerun_same_day(
        self, dispatch_service, event_source, notifiable_user, make_event,
        mock_webpush, test_db_session,
    ):
        user_a = notifiable_user(notification_time="08:00", badge_count=1)
        user_b = notifiable_user(notification_time="09:00")
        event_source.add(user_a.id, [make_event(EventCategory.PERSONAL, "Sinh nhật mẹ")])
        event_source.add(user_b.id, [make_event()])

        first = dispatch_service.run(8, 0, now=NOW)

        assert (first.processed, first.notifications_sent, first.errors) == (1, 1, 0)
        pref = _preference(test_db_session, user_a.id)
        assert pref.badge_count == 2
        assert pref.last_notified_at == NOW
        logs = _logs(test_db_session, user_a.id)
        assert len(logs) == 1
        assert logs[0].success is True

        payload = json.loads(mock_webpush.call_args.kwargs["data"])
        assert payload["title"] == "📅 Sinh nhật mẹ"
        assert payload["data"]["badgeCount"] == 2

        second = dispatch_service.run(8, 0, now=NOW + timedelta(seconds=30))

        assert (second.processed, second.notifications_sent, second.errors) == (1, 0, 0)
        assert second.skipped == 1
        assert mock_webpush.call_count == 1
        assert len(_logs(test_db_session, user_a.id)) == 1

    def test_no_events_today(
        self, dispatch_service, notifiable_user, mock_webpush, test_db_session
    ):
        user = notifiable_user()

        summary = dispatch_service.run(8, 0, now=NOW)

        assert (summary.processed, summary.notifications_sent, summary.errors) == (1, 0, 0)
        assert _logs(test_db_session, user.id) == []
        assert _preference(test_db_session, user.id).last_notified_at is None
        mock_webpush.assert_not_called()

    def test_notified_next_day_again(
        self, dispatch_service, event_source, notifiable_user, make_event, mock_webpush,
    ):
        user = notifiable_user()
        event_source.add(user.id, [make_event(day=TODAY), make_event(day=TODAY + timedelta(days=1))])

        dispatch_service.run(8, 0, now=NOW)
        summary = dispatch_service.run(8, 0, now=NOW + timedelta(days=1))

        assert summary.notifications_sent == 1
        assert mock_webpush.call_count == 2

    def test_stored_events_end_to_end(
        self, test_session_factory, delivery_client, notifiable_user,
        create_occurrence, mock_webpush, test_db_session,
    ):
        user = notifiable_user()
        create_occurrence(user, EventCategory.PERSONAL, "Sinh nhật", occurrence_date=TODAY)
        create_occurrence(None, EventCategory.SYSTEM, "Rằm", occurrence_date=TODAY)
        service = NotificationDispatchService(
            session_factory=test_session_factory,
            event_source=StoredEventSource(test_session_factory),
            delivery_client=delivery_client,
            max_workers=1,
        )

        summary = service.run(8, 0, now=NOW)

        assert summary.notifications_sent == 1
        assert _preference(test_db_session, user.id).badge_count == 2
        payload = json.loads(mock_webpush.call_args.kwargs["data"])
        assert payload["title"] == "🔔 Bạn có 2 sự kiện sắp tới"


# ============================================================================
# Test: category filtering
# ============================================================================


class TestCategoryFiltering:
    """Tests that disabled categories never produce a notification."""

    def test_shared_disabled_only_shared_event(
        self, dispatch_service, event_source, notifiable_user, make_event, mock_webpush
    ):
        user = notifiable_user(shared_events=False)
        event_source.add(user.id, [make_event(EventCategory.SHARED, owner_name="Lan")])

        summary = dispatch_service.run(8, 0, now=NOW)

        assert summary.notifications_sent == 0
        assert summary.skipped == 1
        mock_webpush.assert_not_called()

    def test_disabled_category_excluded_from_message(
        self, dispatch_service, event_source, notifiable_user, make_event, mock_webpush
    ):
        user = notifiable_user(system_events=False)
        event_source.add(user.id, [make_event(EventCategory.PERSONAL, "Mine", id="p1")])
        event_source.add(None, [make_event(EventCategory.SYSTEM, "Mùng 1", id="s1")])

        dispatch_service.run(8, 0, now=NOW)

        payload = json.loads(mock_webpush.call_args.kwargs["data"])
        assert payload["data"]["eventIds"] == ["p1"]


# ============================================================================
# Test: delivery failures
# ============================================================================


class TestDeliveryFailures:
    """Tests for failure isolation and outcome handling."""

    def test_partial_failure_isolated(
        self, dispatch_service, event_source, notifiable_user, make_event,
        mock_webpush, test_db_session,
    ):
        users = [notifiable_user() for _ in range(4)]
        for user in users:
            event_source.add(user.id, [make_event()])
        failing = {f"https://push.example.com/sub/{users[1].id}", f"https://push.example.com/sub/{users[3].id}"}

        def _send(**kwargs):
            if kwargs["subscription_info"]["endpoint"] in failing:
                raise _push_error(503)
            return MagicMock(status_code=201)

        mock_webpush.side_effect = _send

        summary = dispatch_service.run(8, 0, now=NOW)

        assert summary.processed == 4
        assert summary.errors == 2
        assert summary.notifications_sent == 2
        assert mock_webpush.call_count == 4

    def test_transient_failure_released_for_retry(
        self, dispatch_service, event_source, notifiable_user, make_event,
        mock_webpush, test_db_session,
    ):
        user = notifiable_user(badge_count=4)
        event_source.add(user.id, [make_event()])
        mock_webpush.side_effect = _push_error(500)

        summary = dispatch_service.run(8, 0, now=NOW)

        assert summary.errors == 1
        pref = _preference(test_db_session, user.id)
        assert pref.last_notified_at is None
        assert pref.badge_count == 4
        logs = _logs(test_db_session, user.id)
        assert len(logs) == 1
        assert logs[0].outcome == "transient"
        assert logs[0].status_code == 500

        # Next scheduled run the same day retries
        mock_webpush.side_effect = None
        retry = dispatch_service.run(8, 0, now=NOW + timedelta(minutes=1))
        assert retry.notifications_sent == 1

    def test_gone_removes_subscription_keeps_preference(
        self, dispatch_service, event_source, notifiable_user, make_event,
        mock_webpush, test_db_session,
    ):
        user = notifiable_user()
        event_source.add(user.id, [make_event()])
        mock_webpush.side_effect = _push_error(410)

        summary = dispatch_service.run(8, 0, now=NOW)

        assert summary.errors == 1
        test_db_session.expire_all()
        assert test_db_session.query(PushSubscription).filter(
            PushSubscription.user_id == user.id
        ).first() is None
        pref = _preference(test_db_session, user.id)
        assert pref.enabled is True
        assert pref.last_notified_at is None
        assert _logs(test_db_session, user.id)[0].outcome == "gone"

        # The next run skips the user instead of failing again
        mock_webpush.reset_mock()
        mock_webpush.side_effect = None
        next_run = dispatch_service.run(8, 0, now=NOW + timedelta(minutes=1))
        assert next_run.errors == 0
        assert next_run.skipped == 1
        mock_webpush.assert_not_called()

    def test_event_source_error_counted(
        self, test_session_factory, delivery_client, notifiable_user, make_event, mock_webpush
    ):
        broken = notifiable_user()
        healthy = notifiable_user()
        source = MagicMock()

        def _events(user_id, categories, window):
            if user_id == broken.id:
                raise RuntimeError("resolver unavailable")
            return [make_event()]

        source.get_upcoming_events.side_effect = _events
        service = NotificationDispatchService(
            session_factory=test_session_factory,
            event_source=source,
            delivery_client=delivery_client,
            max_workers=1,
        )

        summary = service.run(8, 0, now=NOW)

        assert summary.errors == 1
        assert summary.notifications_sent == 1
        assert mock_webpush.call_args.kwargs["subscription_info"]["endpoint"].endswith(
            f"/{healthy.id}"
        )


# ============================================================================
# Test: run limits and configuration
# ============================================================================


class TestRunLimits:
    """Tests for the deadline and the configuration check."""

    def test_deadline_defers_remaining_users(
        self, test_session_factory, event_source, delivery_client,
        notifiable_user, make_event, mock_webpush, test_db_session,
    ):
        users = [notifiable_user() for _ in range(3)]
        for user in users:
            event_source.add(user.id, [make_event()])
        ticks = iter([0.0, 0.0, 500.0, 500.0, 500.0])
        service = NotificationDispatchService(
            session_factory=test_session_factory,
            event_source=event_source,
            delivery_client=delivery_client,
            max_workers=1,
            deadline_seconds=270,
            clock=lambda: next(ticks),
        )

        summary = service.run(8, 0, now=NOW)

        assert summary.processed == 3
        assert summary.notifications_sent == 1
        assert summary.skipped == 2
        assert summary.deadline_reached is True
        deferred = [u for u in users if _preference(test_db_session, u.id).last_notified_at is None]
        assert len(deferred) == 2

    def test_configuration_error_before_processing(
        self, test_session_factory, event_source, notifiable_user, make_event,
        mock_webpush, test_db_session,
    ):
        user = notifiable_user()
        event_source.add(user.id, [make_event()])
        service = NotificationDispatchService(
            session_factory=test_session_factory,
            event_source=event_source,
            delivery_client=WebPushClient(vapid_private_key="", vapid_claims={"sub": "mailto:a@b.c"}),
        )

        with pytest.raises(ConfigurationError):
            service.run(8, 0, now=NOW)

        mock_webpush.assert_not_called()
        assert _preference(test_db_session, user.id).last_notified_at is None

    @freeze_time("2026-02-12 08:00:00")
    def test_now_defaults_to_current_time(
        self, dispatch_service, event_source, notifiable_user, make_event,
        mock_webpush, test_db_session,
    ):
        user = notifiable_user()
        event_source.add(user.id, [make_event(day=TODAY)])

        summary = dispatch_service.run(8, 0)

        assert summary.notifications_sent == 1
        assert _preference(test_db_session, user.id).last_notified_at == datetime(2026, 2, 12, 8, 0)

    def test_from_settings(self, test_settings, test_session_factory, event_source):
        service = NotificationDispatchService.from_settings(
            test_settings,
            session_factory=test_session_factory,
            event_source=event_source,
        )

        assert service.max_workers == 1
        assert service.deadline_seconds == test_settings.dispatch_deadline_seconds
        assert service.selector.lookahead_days == test_settings.event_lookahead_days
        assert service.delivery_client.vapid_private_key == "test-private-key"


class TestDispatchSummary:
    """Tests for DispatchSummary aggregation."""

    def test_add_statuses(self):
        summary = DispatchSummary(processed=5, match_time="08:00")
        summary.add(UserDispatchStatus.SENT)
        summary.add(UserDispatchStatus.FAILED_GONE)
        summary.add(UserDispatchStatus.ERROR)
        summary.add(UserDispatchStatus.SKIPPED_NO_EVENTS)
        summary.add(UserDispatchStatus.SKIPPED_DEADLINE)

        assert summary.to_dict() == {
            "processed": 5,
            "notifications_sent": 1,
            "errors": 2,
            "skipped": 2,
            "deadline_reached": True,
            "match_time": "08:00",
            "force": False,
        }


# ============================================================================
# Test: concurrent runs on a file database
# ============================================================================


@pytest.fixture
def file_session_factory(tmp_path):
    """Session factory on a file-backed SQLite database shared across threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'dispatch.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def _seed_due_users(session_factory, count):
    db = session_factory()
    try:
        user_ids = []
        for i in range(count):
            user = User(email=f"worker{i}@example.com", name=f"Worker {i}")
            db.add(user)
            db.flush()
            db.add(NotificationPreference(user_id=user.id, notification_time="08:00"))
            db.add(PushSubscription(
                user_id=user.id,
                endpoint=f"https://push.example.com/sub/{user.id}",
                p256dh_key="test-p256dh-key",
                auth_key="test-auth-key",
            ))
            user_ids.append(user.id)
        db.commit()
        return user_ids
    finally:
        db.close()


class TestConcurrentRuns:
    """Tests for the worker pool and overlapping runs."""

    def test_overlapping_runs_notify_each_user_once(
        self, file_session_factory, delivery_client, make_event, mock_webpush
    ):
        user_ids = _seed_due_users(file_session_factory, 12)
        source = StaticEventSource({None: [make_event(EventCategory.SYSTEM, "Rằm tháng Giêng", day=TODAY)]})

        def run_once():
            service = NotificationDispatchService(
                session_factory=file_session_factory,
                event_source=source,
                delivery_client=delivery_client,
                max_workers=4,
            )
            return service.run(8, 0, now=NOW)

        with ThreadPoolExecutor(max_workers=3) as executor:
            summaries = list(executor.map(lambda _: run_once(), range(3)))

        assert all(s.processed == 12 for s in summaries)
        assert sum(s.notifications_sent for s in summaries) == 12
        assert sum(s.errors for s in summaries) == 0
        assert mock_webpush.call_count == 12

        db = file_session_factory()
        try:
            assert db.query(NotificationLog).count() == 12
            for user_id in user_ids:
                pref = _preference(db, user_id)
                assert pref.badge_count == 1
                assert pref.last_notified_at == NOW
        finally:
            db.close()

    def test_default_pool_size(self, test_session_factory, event_source, delivery_client):
        service = NotificationDispatchService(
            session_factory=test_session_factory,
            event_source=event_source,
            delivery_client=delivery_client,
        )

        assert service.max_workers == 8


# ============================================================================
# Test: test push
# ============================================================================


class TestSendTestPush:
    """Tests for the one-off test push."""

    def test_defaults_to_oldest_subscription(
        self, dispatch_service, notifiable_user, mock_webpush, test_db_session
    ):
        first = notifiable_user(badge_count=2)
        notifiable_user()

        manual = dispatch_service.send_test_push(now=NOW)

        assert manual.user_id == first.id
        assert manual.email == first.email
        assert manual.result.success is True
        payload = json.loads(mock_webpush.call_args.kwargs["data"])
        assert payload["tag"] == "test-notification"
        assert "badgeCount" not in payload["data"]

        pref = _preference(test_db_session, first.id)
        assert pref.last_notified_at is None
        assert pref.badge_count == 2
        logs = _logs(test_db_session, first.id)
        assert len(logs) == 1
        assert logs[0].event_ids == []

    def test_unknown_user(self, dispatch_service, create_user, mock_webpush):
        user = create_user()

        with pytest.raises(NotFoundError):
            dispatch_service.send_test_push(user_id=user.id, now=NOW)

        mock_webpush.assert_not_called()

    def test_no_subscriptions(self, dispatch_service, mock_webpush):
        with pytest.raises(NotFoundError):
            dispatch_service.send_test_push(now=NOW)

    def test_gone_removes_subscription(
        self, dispatch_service, notifiable_user, mock_webpush, test_db_session
    ):
        user = notifiable_user()
        mock_webpush.side_effect = _push_error(404)

        manual = dispatch_service.send_test_push(user_id=user.id, now=NOW)

        assert manual.result.success is False
        assert manual.subscription_removed is True
        test_db_session.expire_all()
        assert test_db_session.query(PushSubscription).filter_by(user_id=user.id).count() == 0
        assert _preference(test_db_session, user.id).enabled is True
