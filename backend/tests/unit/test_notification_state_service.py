"""
Unit tests for NotificationStateService.

Tests the per-day claim and release of last_notified_at, badge
increments, subscription removal and the clear-badge action.
"""

from datetime import datetime

import pytest

from backend.src.models.notification_preference import NotificationPreference
from backend.src.models.push_subscription import PushSubscription
from backend.src.services.notification_state_service import (
    NotificationStateService,
    start_of_day,
)


NOW = datetime(2026, 2, 12, 8, 0, 5)


@pytest.fixture
def state_service(test_db_session):
    return NotificationStateService(test_db_session)


def _preference(db, user_id):
    db.expire_all()
    return (
        db.query(NotificationPreference)
        .filter(NotificationPreference.user_id == user_id)
        .one()
    )


class TestClaim:
    """Tests for NotificationStateService.claim."""

    def test_claims_never_notified_user(self, state_service, test_db_session, notifiable_user):
        user = notifiable_user()

        token = state_service.claim(user.id, NOW)

        assert token is not None
        assert token.claimed_at == NOW
        assert token.previous is None
        assert _preference(test_db_session, user.id).last_notified_at == NOW

    def test_claims_user_notified_yesterday(self, state_service, test_db_session, notifiable_user):
        yesterday = datetime(2026, 2, 11, 8, 0)
        user = notifiable_user(last_notified_at=yesterday)

        token = state_service.claim(user.id, NOW)

        assert token.previous == yesterday

    def test_second_claim_same_day_rejected(self, state_service, notifiable_user):
        user = notifiable_user()

        assert state_service.claim(user.id, NOW) is not None
        assert state_service.claim(user.id, NOW.replace(hour=9)) is None

    def test_disabled_user_not_claimed(self, state_service, notifiable_user):
        user = notifiable_user(enabled=False)

        assert state_service.claim(user.id, NOW) is None


class TestRelease:
    """Tests for NotificationStateService.release."""

    def test_restores_previous_value(self, state_service, test_db_session, notifiable_user):
        yesterday = datetime(2026, 2, 11, 8, 0)
        user = notifiable_user(last_notified_at=yesterday)
        token = state_service.claim(user.id, NOW)

        assert state_service.release(token) is True
        assert _preference(test_db_session, user.id).last_notified_at == yesterday
        # Next run the same day may claim again
        assert state_service.claim(user.id, NOW.replace(hour=9)) is not None

    def test_does_not_release_foreign_claim(self, state_service, test_db_session, notifiable_user):
        user = notifiable_user()
        token = state_service.claim(user.id, NOW)
        later = NOW.replace(hour=10)
        test_db_session.query(NotificationPreference).filter(
            NotificationPreference.user_id == user.id
        ).update({"last_notified_at": later})
        test_db_session.commit()

        assert state_service.release(token) is False
        assert _preference(test_db_session, user.id).last_notified_at == later


class TestRecordSuccess:
    """Tests for NotificationStateService.record_success."""

    def test_increments_badge_by_event_count(self, state_service, test_db_session, notifiable_user):
        user = notifiable_user(badge_count=2)
        token = state_service.claim(user.id, NOW)

        state_service.record_success(token, event_count=3)

        pref = _preference(test_db_session, user.id)
        assert pref.badge_count == 5
        assert pref.last_notified_at == NOW

    def test_updates_subscription_last_used(self, state_service, test_db_session, notifiable_user):
        user = notifiable_user()
        token = state_service.claim(user.id, NOW)

        state_service.record_success(token, event_count=1)

        test_db_session.expire_all()
        sub = test_db_session.query(PushSubscription).filter(
            PushSubscription.user_id == user.id
        ).one()
        assert sub.last_used_at == NOW

    def test_never_moves_last_notified_backwards(
        self, state_service, test_db_session, notifiable_user
    ):
        user = notifiable_user()
        token = state_service.claim(user.id, NOW)
        later = NOW.replace(hour=11)
        test_db_session.query(NotificationPreference).filter(
            NotificationPreference.user_id == user.id
        ).update({"last_notified_at": later})
        test_db_session.commit()

        state_service.record_success(token, event_count=1)

        assert _preference(test_db_session, user.id).last_notified_at == later


class TestRemoveSubscription:
    """Tests for NotificationStateService.remove_subscription."""

    def test_removes_subscription_keeps_preference(
        self, state_service, test_db_session, notifiable_user
    ):
        user = notifiable_user()

        assert state_service.remove_subscription(user.id) == 1

        test_db_session.expire_all()
        assert test_db_session.query(PushSubscription).filter(
            PushSubscription.user_id == user.id
        ).first() is None
        assert _preference(test_db_session, user.id).enabled is True

    def test_no_subscription(self, state_service, create_user):
        user = create_user()
        assert state_service.remove_subscription(user.id) == 0


class TestClearBadge:
    """Tests for NotificationStateService.clear_badge."""

    def test_resets_badge(self, state_service, test_db_session, notifiable_user):
        user = notifiable_user(badge_count=7)

        assert state_service.clear_badge(user.id) is True
        assert _preference(test_db_session, user.id).badge_count == 0

    def test_unknown_user(self, state_service):
        assert state_service.clear_badge(999) is False


def test_start_of_day():
    assert start_of_day(NOW) == datetime(2026, 2, 12, 0, 0)
