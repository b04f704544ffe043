"""
Pytest configuration and fixtures for backend tests.

Provides shared fixtures for:
- Test database sessions and session factory
- Sample data factories (users, preferences, subscriptions, occurrences)
- Calendar event builders
- Settings and FastAPI test client
"""

import os
from datetime import date, datetime
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ['AMLICH_DB_URL'] = 'sqlite:///:memory:'
os.environ['AMLICH_ENV'] = 'test'
os.environ['VAPID_PUBLIC_KEY'] = 'test-public-key'
os.environ['VAPID_PRIVATE_KEY'] = 'test-private-key'
os.environ['VAPID_SUBJECT'] = 'mailto:test@example.com'
os.environ['CRON_SECRET'] = 'test-cron-secret'

from backend.src.config.settings import AppSettings
from backend.src.models import (
    Base,
    EventCategory,
    EventOccurrence,
    NotificationPreference,
    PushSubscription,
    User,
)
from backend.src.services.event_source import CalendarEvent


TEST_CRON_SECRET = 'test-cron-secret'


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    from sqlalchemy import event

    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # Enable foreign key constraints for SQLite
    # This must be set for each connection
    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute('pragma foreign_keys=ON')

    event.listen(engine, 'connect', _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_session_factory(test_db_engine):
    """Session factory bound to the test engine, as used by dispatch workers."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )


@pytest.fixture(scope='function')
def test_db_session(test_session_factory):
    """Create a test database session."""
    session = test_session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def create_user(test_db_session):
    """Factory for creating test users."""
    _counter = [0]

    def _create(email=None, name=None):
        _counter[0] += 1
        user = User(
            email=email or f"user{_counter[0]}@example.com",
            name=name or f"User {_counter[0]}",
        )
        test_db_session.add(user)
        test_db_session.commit()
        test_db_session.refresh(user)
        return user
    return _create


@pytest.fixture
def create_preference(test_db_session):
    """Factory for creating notification preferences."""
    def _create(
        user,
        enabled=True,
        notification_time="08:00",
        personal_events=True,
        shared_events=True,
        system_events=True,
        ancestor_worship_events=True,
        last_notified_at=None,
        badge_count=0,
    ):
        pref = NotificationPreference(
            user_id=user.id,
            enabled=enabled,
            notification_time=notification_time,
            personal_events=personal_events,
            shared_events=shared_events,
            system_events=system_events,
            ancestor_worship_events=ancestor_worship_events,
            last_notified_at=last_notified_at,
            badge_count=badge_count,
        )
        test_db_session.add(pref)
        test_db_session.commit()
        test_db_session.refresh(pref)
        return pref
    return _create


@pytest.fixture
def create_subscription(test_db_session):
    """Factory for creating test push subscriptions."""
    def _create(user, endpoint=None):
        sub = PushSubscription(
            user_id=user.id,
            endpoint=endpoint or f"https://push.example.com/sub/{user.id}",
            p256dh_key="test-p256dh-key",
            auth_key="test-auth-key",
        )
        test_db_session.add(sub)
        test_db_session.commit()
        test_db_session.refresh(sub)
        return sub
    return _create


@pytest.fixture
def create_occurrence(test_db_session):
    """Factory for creating stored event occurrences."""
    def _create(
        user=None,
        category=EventCategory.PERSONAL,
        title="Sinh nhật mẹ",
        occurrence_date=None,
        **kwargs,
    ):
        occurrence = EventOccurrence(
            user_id=user.id if user is not None else None,
            category=category.value,
            title=title,
            occurrence_date=occurrence_date or date(2026, 2, 12),
            **kwargs,
        )
        test_db_session.add(occurrence)
        test_db_session.commit()
        test_db_session.refresh(occurrence)
        return occurrence
    return _create


@pytest.fixture
def notifiable_user(create_user, create_preference, create_subscription):
    """Factory for a user with preferences and a push subscription."""
    def _create(**pref_kwargs):
        user = create_user()
        create_preference(user, **pref_kwargs)
        create_subscription(user)
        return user
    return _create


@pytest.fixture
def make_event():
    """Factory for in-memory CalendarEvent objects."""
    _counter = [0]

    def _create(
        category=EventCategory.PERSONAL,
        title="Sinh nhật mẹ",
        day=None,
        **kwargs,
    ):
        _counter[0] += 1
        return CalendarEvent(
            id=kwargs.pop("id", f"evt-{_counter[0]}"),
            title=title,
            date=day or date(2026, 2, 12),
            category=category,
            **kwargs,
        )
    return _create


# ============================================================================
# Settings and API Fixtures
# ============================================================================

@pytest.fixture
def test_settings():
    """Application settings for tests (single dispatch worker)."""
    return AppSettings(
        VAPID_PUBLIC_KEY="test-public-key",
        VAPID_PRIVATE_KEY="test-private-key",
        VAPID_SUBJECT="mailto:test@example.com",
        CRON_SECRET=TEST_CRON_SECRET,
        DISPATCH_MAX_WORKERS=1,
    )


@pytest.fixture
def mock_webpush():
    """Patch pywebpush.webpush as used by the delivery client."""
    with patch("backend.src.services.push_delivery_service.webpush") as mock:
        mock.return_value = MagicMock(status_code=201)
        yield mock


@pytest.fixture
def test_client(test_db_session, test_session_factory, test_settings):
    """Create a FastAPI test client bound to the test database."""
    from fastapi.testclient import TestClient
    from backend.src.config.settings import get_settings
    from backend.src.db.database import get_db, get_session_factory
    from backend.src.main import app

    def get_test_db():
        yield test_db_session

    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_session_factory] = lambda: test_session_factory
    app.dependency_overrides[get_settings] = lambda: test_settings

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def cron_headers():
    """Authorization header accepted by the cron endpoints."""
    return {"Authorization": f"Bearer {TEST_CRON_SECRET}"}


@pytest.fixture
def today():
    """The wall-clock calendar day, for data compared against datetime.now()."""
    return datetime.now().date()
