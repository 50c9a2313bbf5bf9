"""Shared fixtures: in-memory SQLite, a scripted push client and an API client."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from community_dispatch.db.base import Base
from community_dispatch.db.models import Address, DeviceRegistration, Resident
from community_dispatch.notifications.push_client import PushResult

T0 = datetime(2026, 1, 1, 2, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Push client double
# ---------------------------------------------------------------------------

class FakePushClient:
    """Succeeds for every token unless told otherwise.

    ``failures`` maps a token to either an exception (raised) or an error
    string (returned as a provider-level rejection).
    """

    def __init__(self, failures: dict[str, object] | None = None) -> None:
        self.failures = dict(failures or {})
        self.sent: list[dict] = []
        self.closed = False

    async def send_push(self, token, title, body, payload=None):
        self.sent.append({"token": token, "title": title, "body": body, "payload": payload})
        failure = self.failures.get(token)
        if isinstance(failure, BaseException):
            raise failure
        if isinstance(failure, str):
            return PushResult(success=False, error=failure)
        return PushResult(success=True, provider_message_id=f"msg-{token}")

    async def aclose(self) -> None:
        self.closed = True

    @property
    def tokens(self) -> list[str]:
        return [call["token"] for call in self.sent]


class RecordingSuspender:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls = []
        self.error = error

    async def suspend_account(self, resident_id) -> None:
        self.calls.append(resident_id)
        if self.error is not None:
            raise self.error


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def push_client() -> FakePushClient:
    return FakePushClient()


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_address(db: Session, street_id=None, label: str = "Lot 1") -> Address:
    address = Address(id=uuid4(), street_id=street_id or uuid4(), label=label)
    db.add(address)
    db.flush()
    return address


def make_resident(
    db: Session,
    user_ref: str | None = "user-1",
    *,
    address: Address | None = None,
    status: str = "active",
) -> Resident:
    resident = Resident(
        id=uuid4(),
        user_ref=user_ref,
        address_id=address.id if address else None,
        status=status,
    )
    db.add(resident)
    db.flush()
    return resident


def make_device(
    db: Session,
    user_ref: str = "user-1",
    device_id: str = "phone-1",
    token: str = "tok-1",
    *,
    active: bool = True,
    platform: str = "android",
    last_activity: datetime | None = None,
) -> DeviceRegistration:
    device = DeviceRegistration(
        user_ref=user_ref,
        device_id=device_id,
        push_token=token,
        platform=platform,
        active=active,
        last_activity=last_activity or T0,
    )
    db.add(device)
    db.flush()
    return device


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

WEBHOOK_SECRET = "hook-secret"


@pytest.fixture()
def client(db_session: Session, push_client: FakePushClient, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    """TestClient with the DB session and push client overridden; scheduler off."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("FCM_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.delenv("FCM_SERVER_KEY", raising=False)

    from community_dispatch.core.settings import get_settings

    get_settings.cache_clear()

    from community_dispatch.api.deps import get_db, get_push_client
    from community_dispatch.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_push_client] = lambda: push_client
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    get_settings.cache_clear()
    os.environ.pop("DATABASE_URL", None)

