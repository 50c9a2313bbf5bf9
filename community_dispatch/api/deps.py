"""FastAPI dependency injection: database sessions, caller identity and service factories."""
from __future__ import annotations

from collections.abc import Generator
from functools import lru_cache

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from community_dispatch.db.session import get_session_factory
from community_dispatch.delinquency.suspension import ResidentAccountSuspender
from community_dispatch.delinquency.tracker import DelinquencyTracker
from community_dispatch.devices.registry import DeviceRegistry
from community_dispatch.notifications.dispatcher import NotificationDispatcher
from community_dispatch.notifications.push_client import PushClient, build_push_client
from community_dispatch.publications.release import PublicationReleaser


def get_db() -> Generator[Session, None, None]:
    """Yield a SQLAlchemy session; commit on success, rollback on error."""
    db = get_session_factory()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@lru_cache(maxsize=1)
def get_push_client() -> PushClient:
    """Process-wide push client built from settings."""
    return build_push_client()


def get_current_user_ref(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity forwarded by the upstream auth gateway."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_device_registry(db: Session = Depends(get_db)) -> DeviceRegistry:
    return DeviceRegistry(db)


def get_dispatcher(
    db: Session = Depends(get_db),
    push_client: PushClient = Depends(get_push_client),
) -> NotificationDispatcher:
    return NotificationDispatcher(db, push_client)


def get_publication_releaser(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> PublicationReleaser:
    return PublicationReleaser(db, dispatcher)


def get_delinquency_tracker(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> DelinquencyTracker:
    return DelinquencyTracker(db, dispatcher, ResidentAccountSuspender(db))
