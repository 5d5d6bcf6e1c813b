"""
Test configuration and fixtures.

Provides:
- In-memory SQLite engine/session (fresh schema per test)
- Client and appointment factories
- Recording notifier installed as the process-wide notifier
"""
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Keep tests away from any local .env / database file
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["RESEND_API_KEY"] = ""

from appointment_engine.db.models import Appointment, Client
from appointment_engine.db.session import build_engine, init_db
from appointment_engine.services import appointment_service, notification_service


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    """Session bound to the per-test in-memory database."""
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Notifiers
# =============================================================================

@dataclass
class RecordingNotifier:
    """Collects sends; optionally fails the first N calls."""

    fail_times: int = 0
    sent: list = field(default_factory=list)
    calls: int = 0

    async def send(self, recipient, appointment) -> None:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise ConnectionError(f"smtp down (call {self.calls})")
        self.sent.append((recipient.id, appointment))


@pytest.fixture(scope="function")
def notifier() -> Generator[RecordingNotifier, None, None]:
    recording = RecordingNotifier()
    notification_service.set_notifier(recording)
    yield recording
    notification_service.set_notifier(None)


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture(scope="function")
def test_client(db: Session) -> Client:
    client = Client(
        id=uuid.uuid4(),
        name="Test Client",
        email=f"client-{uuid.uuid4().hex[:8]}@test.com",
    )
    db.add(client)
    db.commit()
    return client


@pytest.fixture(scope="function")
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture(scope="function")
def make_appointment(db: Session, test_client: Client, owner_id: uuid.UUID):
    """Create an appointment through the service (reminders planned at NOW)."""

    def _make(**overrides) -> Appointment:
        fields = {
            "owner_id": owner_id,
            "client_id": test_client.id,
            "title": "Consultation",
            "start_time": datetime(2024, 6, 10, 15, 0, tzinfo=timezone.utc),
            "now": NOW,
        }
        fields.update(overrides)
        return appointment_service.create_appointment(db, **fields)

    return _make


@pytest.fixture(scope="function")
def now() -> datetime:
    """Fixed clock used for planning and dispatch in tests."""
    return NOW
