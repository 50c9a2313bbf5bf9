"""Scheduled publication release.

A publication is due when ``scheduled`` is set, ``notifications_sent`` is
still false and ``scheduled_at`` has passed.  Releasing it first claims the
publication by flipping ``notifications_sent`` with a conditional update, then
resolves the recipients from its target rows and pushes one notification
per recipient concurrently (a failure for one recipient never stops the
others).  A run that loses the flip sends nothing.  The flag records that
dispatch was attempted, not that every delivery succeeded.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from community_dispatch.core.errors import NotFoundError, ValidationError
from community_dispatch.core.timeutil import as_utc, utcnow
from community_dispatch.db.models import Publication, PublicationTarget
from community_dispatch.db.repositories import (
    PublicationRepository,
    PublicationTargetRepository,
    ResidentRepository,
)
from community_dispatch.notifications.dispatcher import CHANNEL_PUSH, NotificationDispatcher

logger = logging.getLogger(__name__)

TARGET_ALL = "all"
TARGET_STREET = "street"
TARGET_ADDRESS = "address"
VALID_TARGET_TYPES = frozenset({TARGET_ALL, TARGET_STREET, TARGET_ADDRESS})

NOTIFICATION_TITLE = "New bulletin"
_PREVIEW_LENGTH = 100


@dataclass
class ReleaseReport:
    released: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    recipients_attempted: int = 0
    delivery_failures: int = 0


def validate_target(target_type: str, street_id: UUID | None, address_id: UUID | None) -> None:
    """Reject target rows whose reference fields do not match their type."""
    if target_type not in VALID_TARGET_TYPES:
        raise ValidationError(f"Unknown target_type {target_type!r}; must be one of {sorted(VALID_TARGET_TYPES)}")
    if target_type == TARGET_STREET and street_id is None:
        raise ValidationError("street targets require street_id")
    if target_type == TARGET_ADDRESS and address_id is None:
        raise ValidationError("address targets require address_id")
    if target_type == TARGET_ALL and (street_id is not None or address_id is not None):
        raise ValidationError("'all' targets must not reference a street or address")


def preview(body: str) -> str:
    if len(body) > _PREVIEW_LENGTH:
        return body[:_PREVIEW_LENGTH] + "..."
    return body


class PublicationReleaser:
    """Resolve publication recipients and dispatch their notifications."""

    def __init__(self, db_session: Session, dispatcher: NotificationDispatcher) -> None:
        self.db = db_session
        self.dispatcher = dispatcher
        self.publications = PublicationRepository(db_session)
        self.targets = PublicationTargetRepository(db_session)
        self.residents = ResidentRepository(db_session)

    # -- authoring helpers --------------------------------------------------

    def add_target(
        self,
        publication_id: UUID,
        target_type: str,
        *,
        street_id: UUID | None = None,
        address_id: UUID | None = None,
    ) -> PublicationTarget:
        validate_target(target_type, street_id, address_id)
        return self.targets.create(
            publication_id=publication_id,
            target_type=target_type,
            street_id=street_id,
            address_id=address_id,
        )

    # -- recipients ---------------------------------------------------------

    def resolve_recipients(self, publication_id: UUID) -> list[str]:
        """Union of the users reached by every target row, first-seen order."""
        seen: dict[str, None] = {}
        for target in self.targets.list_for_publication(publication_id):
            if target.target_type == TARGET_ALL:
                user_refs = self.residents.active_user_refs()
            elif target.target_type == TARGET_STREET:
                user_refs = self.residents.active_user_refs_on_street(target.street_id)
            elif target.target_type == TARGET_ADDRESS:
                user_refs = self.residents.active_user_refs_at_address(target.address_id)
            else:
                logger.warning("Skipping target %s with unknown type %r", target.id, target.target_type)
                continue
            for user_ref in user_refs:
                seen.setdefault(user_ref, None)
        return list(seen)

    # -- release ------------------------------------------------------------

    async def release(self, publication: Publication, report: ReleaseReport | None = None) -> int:
        """Notify every recipient of *publication*; returns the recipient count."""
        report = report if report is not None else ReleaseReport()
        self.db.refresh(publication)
        if publication.notifications_sent:
            logger.info("Publication %s already released; skipping", publication.id)
            return 0

        if not self.publications.mark_notifications_sent(publication.id):
            logger.info("Publication %s claimed by another run; skipping", publication.id)
            return 0

        recipients = self.resolve_recipients(publication.id)
        payload = {
            "type": "bulletin",
            "publication_id": str(publication.id),
            "kind": publication.kind,
            "preview": preview(publication.body),
        }
        results = await asyncio.gather(
            *(
                self.dispatcher.send(user_ref, CHANNEL_PUSH, NOTIFICATION_TITLE, publication.title, payload)
                for user_ref in recipients
            ),
            return_exceptions=True,
        )
        failures = 0
        for user_ref, result in zip(recipients, results):
            if isinstance(result, Exception):
                failures += 1
                logger.warning("Publication %s notification to user %s failed: %s", publication.id, user_ref, result)
            elif isinstance(result, BaseException):
                raise result
            elif not result.sent:
                failures += 1

        report.recipients_attempted += len(recipients)
        report.delivery_failures += failures
        logger.info(
            "Publication %s released to %d recipients (%d undelivered)",
            publication.id,
            len(recipients),
            failures,
        )
        return len(recipients)

    async def release_due(self, now: datetime | None = None) -> ReleaseReport:
        now = now or utcnow()
        report = ReleaseReport()
        due = self.publications.due_ids(now)
        if not due:
            logger.info("No scheduled publications due")
            return report

        logger.info("Releasing %d scheduled publications", len(due))
        for publication_id in due:
            try:
                publication = self.publications.get(publication_id)
                if publication is None:
                    continue
                await self.release(publication, report)
                self.db.commit()
                report.released.append(str(publication_id))
            except Exception:
                self.db.rollback()
                logger.exception("Releasing publication %s failed", publication_id)
                report.failed.append(str(publication_id))
        return report

    async def release_now(self, publication_id: UUID) -> int:
        """Immediately notify an unscheduled (or early) publication."""
        publication = self.publications.get(publication_id)
        if publication is None:
            raise NotFoundError(f"Publication {publication_id} not found")
        return await self.release(publication)

    # -- status -------------------------------------------------------------

    def status_report(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        scheduled = self.publications.list_scheduled()
        pending = [p for p in scheduled if not p.notifications_sent]
        sent = [p for p in scheduled if p.notifications_sent]
        overdue = [p for p in pending if p.scheduled_at is not None and as_utc(p.scheduled_at) <= now]

        def _pending_entry(p: Publication) -> dict:
            scheduled_at = as_utc(p.scheduled_at)
            is_overdue = scheduled_at is not None and scheduled_at <= now
            minutes = None if scheduled_at is None or is_overdue else math.ceil((scheduled_at - now).total_seconds() / 60)
            return {
                "id": str(p.id),
                "title": p.title,
                "scheduled_at": scheduled_at.isoformat() if scheduled_at else None,
                "notifications_sent": p.notifications_sent,
                "is_overdue": is_overdue,
                "minutes_until_release": minutes,
            }

        def _sent_entry(p: Publication) -> dict:
            scheduled_at = as_utc(p.scheduled_at)
            return {
                "id": str(p.id),
                "title": p.title,
                "scheduled_at": scheduled_at.isoformat() if scheduled_at else None,
                "notifications_sent": p.notifications_sent,
            }

        return {
            "summary": {
                "total": len(scheduled),
                "pending": len(pending),
                "sent": len(sent),
                "overdue": len(overdue),
            },
            "pending": [_pending_entry(p) for p in pending],
            "sent": [_sent_entry(p) for p in sent],
        }
