"""Account-suspension collaborator.

The tracker only owns the ``is_suspended_for_delinquency`` flag; blocking the
resident's account belongs to resident management and is requested through
an :class:`AccountSuspender`.  Failures surface as ``IntegrationError``.
"""
from __future__ import annotations

import logging
from typing import Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from community_dispatch.core.errors import IntegrationError
from community_dispatch.db.repositories import ResidentRepository

logger = logging.getLogger(__name__)


class AccountSuspender(Protocol):
    async def suspend_account(self, resident_id: UUID) -> None:
        ...


class ResidentAccountSuspender:
    """Mark the linked resident ``suspended`` in the shared database."""

    def __init__(self, db_session: Session) -> None:
        self.residents = ResidentRepository(db_session)

    async def suspend_account(self, resident_id: UUID) -> None:
        try:
            resident = self.residents.get(resident_id)
            if resident is None:
                raise IntegrationError(f"Resident {resident_id} not found")
            self.residents.update(resident, status="suspended")
        except SQLAlchemyError as exc:
            raise IntegrationError(f"Could not suspend resident {resident_id}: {exc}") from exc
        logger.info("Resident %s account suspended", resident_id)
