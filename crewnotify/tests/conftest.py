"""
Pytest configuration and fixtures for crew-notify tests.

Provides shared fixtures for:
- Test database sessions
- Recipients and channel targets
- Fake delivery channels and router
- Preference engine
- FastAPI test client
"""

import os
import pytest
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker


# Set test environment variables before importing app modules
os.environ['CREWNOTIFY_DB_URL'] = 'sqlite:///:memory:'
os.environ['TIMER_ENABLED'] = 'false'
os.environ['CREWNOTIFY_LOG_LEVEL'] = 'WARNING'

from crewnotify.src.db.database import build_engine
from crewnotify.src.models import Base, Recipient
from crewnotify.src.services.channels.base import Channel
from crewnotify.src.services.delivery_router import DeliveryRouter, RetryPolicy
from crewnotify.src.services.exceptions import (
    ChannelTargetInvalidError,
    ChannelTransportError,
)
from crewnotify.src.services.notification_service import PreferenceEngine
from crewnotify.src.services.notification_types import BUILTIN_TYPES, NotificationTypeRegistry


PUSH_TOKEN = "ExponentPushToken[test-device-0001]"

WEB_PUSH_SUBSCRIPTION = {
    "endpoint": "https://push.example.com/send/abc123",
    "keys": {"p256dh": "test-p256dh-key", "auth": "test-auth-key"},
}


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Fresh in-memory SQLite database (shared connection, foreign keys on)."""
    engine = build_engine('sqlite:///:memory:')
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_session_factory(test_db_engine):
    """Session factory bound to the test engine (used by the timer service)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


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
# Channel Fixtures
# ============================================================================

class FakeChannel(Channel):
    """
    In-memory channel recording every send.

    behavior:
        "ack": acknowledge every send
        "transport": raise ChannelTransportError
        "invalid": raise ChannelTargetInvalidError
    """

    def __init__(
        self,
        kind: str = "mobile_push",
        target_field: str = "push_token",
        response_field: str = "push_response",
        behavior: str = "ack",
    ):
        self.kind = kind
        self.target_field = target_field
        self.response_field = response_field
        self.behavior = behavior
        self.calls = []
        self.closed = False

    def send(self, target: Any, title: str, body: str,
             data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.calls.append({"target": target, "title": title, "body": body, "data": data})
        if self.behavior == "transport":
            raise ChannelTransportError(self.kind, "gateway unavailable")
        if self.behavior == "invalid":
            raise ChannelTargetInvalidError(self.kind, "target no longer registered")
        return {"id": f"{self.kind}-ticket-{len(self.calls)}"}

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def push_channel():
    """Fake mobile push channel (acknowledges by default)."""
    return FakeChannel()


@pytest.fixture
def web_channel():
    """Fake web push channel (acknowledges by default)."""
    return FakeChannel(
        kind="web_push",
        target_field="web_push_subscription",
        response_field="web_push_response",
    )


@pytest.fixture
def delivery_router(push_channel, web_channel):
    """DeliveryRouter over the two fake channels."""
    return DeliveryRouter([push_channel, web_channel])


@pytest.fixture
def retry_policy():
    """Short retry policy: 60s base, 1h cap, 3 attempts."""
    return RetryPolicy(base_seconds=60, max_seconds=3600, max_attempts=3)


@pytest.fixture
def type_registry():
    """Fresh registry with the built-in types (isolated from the global one)."""
    return NotificationTypeRegistry(BUILTIN_TYPES)


@pytest.fixture
def engine(test_db_session, delivery_router, type_registry, retry_policy):
    """PreferenceEngine wired to the fake channels."""
    return PreferenceEngine(
        test_db_session,
        router=delivery_router,
        type_registry=type_registry,
        retry_policy=retry_policy,
    )


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def create_recipient(test_db_session):
    """Factory for creating Recipient rows."""
    _counter = [0]

    def _create(external_id=None, name=None, email=None, is_active=True):
        _counter[0] += 1
        recipient = Recipient(
            external_id=external_id or f"emp-{_counter[0]:04d}",
            name=name or f"Crew Member {_counter[0]}",
            email=email,
            is_active=is_active,
        )
        test_db_session.add(recipient)
        test_db_session.commit()
        test_db_session.refresh(recipient)
        return recipient
    return _create


@pytest.fixture
def recipient(create_recipient):
    """A single active recipient without channel targets."""
    return create_recipient()


@pytest.fixture
def push_token():
    """A well-formed mobile push token."""
    return PUSH_TOKEN


@pytest.fixture
def web_push_subscription():
    """A well-formed browser push subscription."""
    return {"endpoint": WEB_PUSH_SUBSCRIPTION["endpoint"], "keys": dict(WEB_PUSH_SUBSCRIPTION["keys"])}


@pytest.fixture
def reachable_recipient(create_recipient, engine):
    """An active recipient with a registered mobile push token."""
    recipient = create_recipient()
    engine.preferences.update_push_token(recipient.id, PUSH_TOKEN)
    return recipient


@pytest.fixture
def notification_data():
    """Factory for send_if_allowed payloads."""
    def _create(notification_type="task_assigned", priority="medium", data=None, **kwargs):
        payload = {
            "title": kwargs.pop("title", "New task"),
            "message": kwargs.pop("message", "You were assigned a task."),
            "type": notification_type,
            "priority": priority,
            "data": data,
        }
        payload.update(kwargs)
        return payload
    return _create


# ============================================================================
# API Fixtures
# ============================================================================

@pytest.fixture
def test_client(test_db_session, delivery_router):
    """Create a test client for the FastAPI application."""
    from fastapi.testclient import TestClient
    from crewnotify.src.main import app
    from crewnotify.src.api.notifications import get_delivery_router, limiter
    from crewnotify.src.db.database import get_db

    def get_test_db():
        try:
            yield test_db_session
        finally:
            pass

    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_delivery_router] = lambda: delivery_router
    limiter.enabled = False

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    limiter.enabled = True


@pytest.fixture
def auth_headers():
    """Headers identifying the acting recipient."""
    def _headers(recipient):
        return {"X-Recipient-Id": recipient.external_id}
    return _headers
