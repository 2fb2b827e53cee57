"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, recreated for each test
- User factory and JWT minting for authenticated requests
- Fakes for the calendar client and the realtime publisher
- HTTPX AsyncClient wired to the app with the test session
"""
import os

# Must be set before anything imports agenda.core.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RESEND_API_KEY"] = ""
os.environ["GOOGLE_CLIENT_EMAIL"] = ""
os.environ["GOOGLE_PRIVATE_KEY"] = ""
os.environ["SENTRY_DSN"] = ""

import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from agenda.core.deps import get_db
from agenda.core.security import create_access_token
from agenda.db.base import Base
from agenda.db.enums import EventStatus, EventType, Role
from agenda.db.models import Event, User
from agenda.db.session import SessionLocal, engine
from agenda.main import app
from agenda.schemas.auth import UserSession
from agenda.services.audit_service import AuditRecorder
from agenda.services.calendar_sync_service import CalendarSyncError
from agenda.services.event_service import EventTransitionEngine
from agenda.services.notification_service import NotificationDispatcher


# =============================================================================
# Fakes
# =============================================================================

class FakeCalendar:
    """In-memory stand-in for CalendarSyncClient."""

    def __init__(self):
        self.busy = False
        self.fail_busy = False
        self.fail_create = False
        self.fail_update = False
        self.fail_delete = False
        self.on_query_busy: Callable[[], None] | None = None
        self.calls: list[tuple] = []
        self._next_id = 0

    async def create(self, event) -> str:
        self.calls.append(("create", event))
        if self.fail_create:
            raise CalendarSyncError("create failed", status_code=503)
        self._next_id += 1
        return f"gcal-{self._next_id}"

    async def update(self, external_id: str, event) -> None:
        self.calls.append(("update", external_id, event))
        if self.fail_update:
            raise CalendarSyncError("update failed", status_code=503)

    async def delete(self, external_id: str) -> None:
        self.calls.append(("delete", external_id))
        if self.fail_delete:
            raise CalendarSyncError("delete failed", status_code=500)

    async def query_busy(self, start, end) -> bool:
        self.calls.append(("query_busy", start, end))
        if self.on_query_busy:
            self.on_query_busy()
        if self.fail_busy:
            raise RuntimeError("freebusy exploded")
        return self.busy

    def called(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]


class FakePublisher:
    """Collects realtime publishes instead of sending them."""

    def __init__(self):
        self.published: list[tuple] = []
        self.reassigned: list[tuple] = []
        self.fail = False

    async def publish(self, target, event_name: str, payload: dict) -> int:
        if self.fail:
            raise ConnectionError("hub down")
        self.published.append((target, event_name, payload))
        return 1

    async def reassign_role(self, user_id, old_role: str, new_role: str) -> int:
        self.reassigned.append((user_id, old_role, new_role))
        return 1

    def rooms(self) -> list[str]:
        return [target.room for target, _, _ in self.published]

    def types(self) -> list[str]:
        return [payload["type"] for _, _, payload in self.published]


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test on the shared in-memory connection."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    def _make(role: Role = Role.COORDINATOR, name: str | None = None) -> User:
        suffix = uuid.uuid4().hex[:8]
        user = User(
            email=f"{role.value.lower()}-{suffix}@test.com",
            name=name or f"{role.value.title()} {suffix}",
            role=role.value,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_event(db: Session) -> Callable[..., Event]:
    def _make(
        creator: User,
        *,
        status: EventStatus = EventStatus.PENDING,
        event_type: EventType = EventType.REUNIAO,
        start: datetime | None = None,
        days: float = 1,
        approved_by: User | None = None,
        external_id: str | None = None,
        title: str = "Reunião de equipe",
        description: str | None = None,
    ) -> Event:
        start = start or datetime.now(timezone.utc) + timedelta(days=2)
        event = Event(
            title=title,
            description=description,
            start_date=start,
            end_date=start + timedelta(days=days),
            event_type=event_type.value,
            status=status.value,
            created_by_id=creator.id,
            approved_by_id=approved_by.id if approved_by else None,
            external_calendar_event_id=external_id,
        )
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    return _make


@pytest.fixture
def session_for() -> Callable[[User], UserSession]:
    def _session(user: User) -> UserSession:
        return UserSession(user_id=user.id, email=user.email, name=user.name, role=Role(user.role))

    return _session


@pytest.fixture
def auth_headers() -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(user.id, user.email, user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# =============================================================================
# Engine Fixtures
# =============================================================================

@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def engine_factory(db: Session, calendar: FakeCalendar, publisher: FakePublisher):
    def _make(calendar=calendar, publisher=publisher) -> EventTransitionEngine:
        return EventTransitionEngine(
            db,
            calendar=calendar,
            notifications=NotificationDispatcher(db, publisher),
            audit=AuditRecorder(db),
        )

    return _make


@pytest.fixture
def workflow(engine_factory) -> EventTransitionEngine:
    return engine_factory()


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(
    db: Session, calendar: FakeCalendar, publisher: FakePublisher
) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient bound to the app, the test session and the fakes."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.state.calendar = calendar
    app.state.realtime = publisher

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    app.state.calendar = None
    app.state.realtime = None
