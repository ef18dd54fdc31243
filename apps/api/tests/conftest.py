"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database with savepoint isolation (rollback after each test)
- Fake delivery / subject / action / cache collaborators
- AutomationService wired with the fakes
- HTTPX AsyncClient with dependency overrides and JWT auth headers
"""
import os
import uuid
from typing import Any, AsyncGenerator, Generator

# Settings are read at import time; configure before importing the app
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["REDIS_URL"] = "memory://"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["EMAIL_DELIVERY_URL"] = ""
os.environ["PROFILE_SERVICE_URL"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from mailflow.core.deps import get_automation_service, get_db
from mailflow.core.security import Principal, create_session_token
from mailflow.db.base import Base
from mailflow.db.session import SessionLocal, engine
from mailflow.main import app
from mailflow.schemas.automation import EmailStep, DelayStep
from mailflow.services.audit_service import DatabaseAuditSink
from mailflow.services.automation_service import AutomationService
from mailflow.services.delivery_service import DeliveryResult
from mailflow.services.subject_service import StaticSubjectDirectory
import mailflow.db.models  # noqa: F401


# =============================================================================
# Fakes
# =============================================================================


class FakeDelivery:
    """Records sends; fails while ``fail_with`` is set."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.fail_with: str | None = None
        self.raise_with: Exception | None = None
        self.on_send = None
        self.log_contexts: list[dict | None] = []

    async def send(
        self, template_ref, subject, recipient, variables, *, log_context=None
    ) -> DeliveryResult:
        self.log_contexts.append(log_context)
        if self.on_send is not None:
            await self.on_send()
        if self.raise_with is not None:
            raise self.raise_with
        if self.fail_with is not None:
            return DeliveryResult(success=False, error=self.fail_with)
        self.sent.append(
            {
                "template": template_ref,
                "subject": subject,
                "to": recipient,
                "variables": variables,
            }
        )
        return DeliveryResult(success=True, message_id=f"msg-{len(self.sent)}")


class FakeActions:
    def __init__(self):
        self.calls: list[tuple[str, dict, dict]] = []
        self.error: Exception | None = None

    def run(self, action, config, context) -> None:
        self.calls.append((action, config, context))
        if self.error is not None:
            raise self.error


class RecordingCache:
    def __init__(self):
        self.tags: list[str] = []

    def invalidate(self, tag: str) -> None:
        self.tags.append(tag)


# =============================================================================
# Database Fixtures (Savepoint pattern)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(db_engine) -> Generator[Session, None, None]:
    """
    Session joined to an outer transaction that is rolled back after the test.

    App code can commit freely; commits release SAVEPOINTs, not the outer
    transaction.
    """
    connection = db_engine.connect()
    transaction = connection.begin()
    session = SessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


# =============================================================================
# Principals and collaborators
# =============================================================================


@pytest.fixture
def admin() -> Principal:
    return Principal(user_id=uuid.uuid4(), role="admin", is_admin=True)


@pytest.fixture
def member() -> Principal:
    return Principal(user_id=uuid.uuid4(), role="member", is_admin=False)


@pytest.fixture
def profile_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def subjects(profile_id) -> StaticSubjectDirectory:
    return StaticSubjectDirectory(
        {
            profile_id: {
                "email": "subject@example.com",
                "first_name": "Sam",
                "has_listings": False,
                "total_shares": 3,
            }
        }
    )


@pytest.fixture
def fake_delivery() -> FakeDelivery:
    return FakeDelivery()


@pytest.fixture
def fake_actions() -> FakeActions:
    return FakeActions()


@pytest.fixture
def cache() -> RecordingCache:
    return RecordingCache()


@pytest.fixture
def service(db, fake_delivery, subjects, fake_actions, cache) -> AutomationService:
    return AutomationService(
        db,
        delivery=fake_delivery,
        subjects=subjects,
        actions=fake_actions,
        audit=DatabaseAuditSink(db),
        cache=cache,
    )


WELCOME_STEPS = [
    EmailStep(template_slug="welcome", subject="Welcome!"),
    DelayStep(delay_minutes=2880),
    EmailStep(template_slug="tips", subject="Tips"),
]


@pytest.fixture
def make_flow(service, admin):
    """Create (and by default activate) a flow through the service."""

    def _make(name: str = "Welcome", steps=None, activate: bool = True):
        result = service.create_flow(
            admin,
            {
                "name": name,
                "trigger_type": "user_signup",
                "steps": [
                    s.model_dump() for s in (WELCOME_STEPS if steps is None else steps)
                ],
            },
        )
        assert result.ok, result.error
        flow = result.data
        if activate:
            toggled = service.toggle_flow_status(admin, flow.id, "active")
            assert toggled.ok, toggled.error
            flow = toggled.data
        return flow

    return _make


# =============================================================================
# Client Fixtures
# =============================================================================


@pytest.fixture
def admin_headers(admin) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_session_token(admin.user_id, 'admin')}"}


@pytest.fixture
def member_headers(member) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_session_token(member.user_id, 'member')}"}


@pytest.fixture
async def client(db, service) -> AsyncGenerator[AsyncClient, None]:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_automation_service] = lambda: service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
