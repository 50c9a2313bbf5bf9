"""Delinquency tracker: balance entry points and the daily sweep.

Balance writes from billing and the daily sweep both go through
``DelinquencyRepository.save()``, which recomputes derived fields from the
current ``amount_owed`` on every write.

The daily sweep is two passes over the delinquent aggregates, processed one
at a time:

1. aging + reminders (30, 45 and 55 to 59 days; at most one per calendar day)
2. suspension of everything at or past 60 days that is not yet suspended

Each aggregate is committed on its own.  A failure rolls back that
aggregate only, is logged with its resident id, and the sweep moves on.
The suspension flag is committed before the account collaborator is called,
so a failing collaborator never reverts it.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy.orm import Session

from community_dispatch.core.errors import NotFoundError, ValidationError
from community_dispatch.core.settings import get_settings
from community_dispatch.core.timeutil import same_calendar_day, utcnow
from community_dispatch.db.models import DelinquencyAggregate
from community_dispatch.db.repositories import DelinquencyRepository, ResidentRepository
from community_dispatch.delinquency.reminders import (
    SUSPENSION_BODY,
    SUSPENSION_REASON,
    SUSPENSION_THRESHOLD_DAYS,
    SUSPENSION_TITLE,
    reminder_for,
    reminder_payload,
    suspension_payload,
)
from community_dispatch.delinquency.suspension import AccountSuspender
from community_dispatch.notifications.dispatcher import CHANNEL_PUSH, NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    evaluated: int = 0
    reminders_sent: int = 0
    suspended: int = 0
    failed: list[str] = field(default_factory=list)

    def merge(self, other: SweepReport) -> SweepReport:
        return SweepReport(
            evaluated=self.evaluated + other.evaluated,
            reminders_sent=self.reminders_sent + other.reminders_sent,
            suspended=self.suspended + other.suspended,
            failed=self.failed + other.failed,
        )


def _to_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid amount {value!r}") from exc
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount {value!r}")
    return amount.quantize(Decimal("0.01"))


class DelinquencyTracker:
    """Maintain delinquency aggregates and run the daily compliance sweep."""

    def __init__(
        self,
        db_session: Session,
        dispatcher: NotificationDispatcher,
        account_suspender: AccountSuspender,
        *,
        timezone_name: str | None = None,
    ) -> None:
        self.db = db_session
        self.dispatcher = dispatcher
        self.account_suspender = account_suspender
        self.aggregates = DelinquencyRepository(db_session)
        self.residents = ResidentRepository(db_session)
        self.timezone_name = timezone_name or get_settings().community_timezone

    # -- billing entry points -----------------------------------------------

    def set_balance(self, resident_id: UUID, amount_owed, now: datetime | None = None) -> DelinquencyAggregate:
        """Set the household balance; creates the aggregate on the first charge."""
        amount = _to_amount(amount_owed)
        if amount < 0:
            raise ValidationError(f"amount_owed must be non-negative, got {amount}")
        return self._write_balance(resident_id, lambda _current: amount, now or utcnow())

    def adjust_balance(self, resident_id: UUID, delta, now: datetime | None = None) -> DelinquencyAggregate:
        """Add a charge (positive) or payment (negative); the balance floors at 0."""
        change = _to_amount(delta)
        return self._write_balance(resident_id, lambda current: max(Decimal("0"), current + change), now or utcnow())

    def _write_balance(
        self,
        resident_id: UUID,
        new_amount: Callable[[Decimal], Decimal],
        now: datetime,
    ) -> DelinquencyAggregate:
        aggregate = self.aggregates.get_by_resident(resident_id)
        if aggregate is None:
            if self.residents.get(resident_id) is None:
                raise NotFoundError(f"Resident {resident_id} not found")
            aggregate = DelinquencyAggregate(resident_id=resident_id, amount_owed=Decimal("0"))
        else:
            self.db.refresh(aggregate)

        was_suspended = bool(aggregate.is_suspended_for_delinquency)
        aggregate.amount_owed = new_amount(Decimal(aggregate.amount_owed or 0))
        self.aggregates.save(aggregate, now)
        if was_suspended and not aggregate.is_suspended_for_delinquency:
            logger.info("Delinquency suspension flag cleared for resident %s", resident_id)
        return aggregate

    def get_for_resident(self, resident_id: UUID) -> DelinquencyAggregate:
        aggregate = self.aggregates.get_by_resident(resident_id)
        if aggregate is None:
            raise NotFoundError(f"No delinquency record for resident {resident_id}")
        return aggregate

    # -- sweeps -------------------------------------------------------------

    async def run_daily_sweep(self, now: datetime | None = None) -> SweepReport:
        now = now or utcnow()
        logger.info("Delinquency sweep started")
        report = await self.run_reminder_sweep(now)
        report = report.merge(await self.run_suspension_sweep(now))
        logger.info(
            "Delinquency sweep finished: evaluated=%d reminders=%d suspended=%d failed=%d",
            report.evaluated,
            report.reminders_sent,
            report.suspended,
            len(report.failed),
        )
        return report

    async def run_reminder_sweep(self, now: datetime | None = None) -> SweepReport:
        now = now or utcnow()
        report = SweepReport()
        for aggregate_id in self.aggregates.delinquent_ids():
            report.evaluated += 1
            if await self._isolated(aggregate_id, self._evaluate_reminder, now, report):
                report.reminders_sent += 1
        return report

    async def run_suspension_sweep(self, now: datetime | None = None) -> SweepReport:
        now = now or utcnow()
        report = SweepReport()
        candidates = self.aggregates.suspension_candidate_ids(SUSPENSION_THRESHOLD_DAYS)
        logger.info("Aggregates due for suspension: %d", len(candidates))
        for aggregate_id in candidates:
            if await self._isolated(aggregate_id, self._suspend, now, report):
                report.suspended += 1
        return report

    async def _isolated(
        self,
        aggregate_id: UUID,
        step: Callable[[DelinquencyAggregate, datetime], Awaitable[bool]],
        now: datetime,
        report: SweepReport,
    ) -> bool:
        """Run *step* for one aggregate and commit; roll back and log on failure."""
        resident_id = None
        try:
            aggregate = self.aggregates.get(aggregate_id)
            if aggregate is None:
                return False
            self.db.refresh(aggregate)
            resident_id = aggregate.resident_id
            acted = await step(aggregate, now)
            self.db.commit()
            return acted
        except Exception:
            self.db.rollback()
            logger.exception(
                "Delinquency step %s failed for aggregate %s (resident %s)",
                step.__name__,
                aggregate_id,
                resident_id,
            )
            report.failed.append(str(aggregate_id))
            return False

    async def _evaluate_reminder(self, aggregate: DelinquencyAggregate, now: datetime) -> bool:
        self.aggregates.save(aggregate, now)
        if not aggregate.is_delinquent:
            return False
        if same_calendar_day(aggregate.last_notification_date, now, self.timezone_name):
            return False

        reminder = reminder_for(aggregate.days_in_arrears)
        if reminder is None:
            return False

        user_ref = aggregate.resident.user_ref if aggregate.resident else None
        if not user_ref:
            logger.info("Resident %s has no linked user; reminder skipped", aggregate.resident_id)
            return False

        record = await self.dispatcher.send(
            user_ref,
            CHANNEL_PUSH,
            reminder.title,
            reminder.body,
            reminder_payload(aggregate.days_in_arrears, aggregate.amount_owed),
        )
        aggregate.notifications_sent = (aggregate.notifications_sent or 0) + 1
        aggregate.last_notification_date = now
        self.aggregates.save(aggregate, now)
        logger.info(
            "Reminder at %d days sent for resident %s (notification %s, sent=%s)",
            aggregate.days_in_arrears,
            aggregate.resident_id,
            record.id,
            record.sent,
        )
        return True

    async def _suspend(self, aggregate: DelinquencyAggregate, now: datetime) -> bool:
        self.aggregates.save(aggregate, now)
        if (
            not aggregate.is_delinquent
            or aggregate.is_suspended_for_delinquency
            or aggregate.days_in_arrears < SUSPENSION_THRESHOLD_DAYS
        ):
            return False

        aggregate.is_suspended_for_delinquency = True
        aggregate.suspension_date = now
        aggregate.suspension_reason = SUSPENSION_REASON
        self.aggregates.save(aggregate, now)
        # A collaborator failure rolls back only its own writes.
        self.db.commit()

        resident_id = aggregate.resident_id
        try:
            await self.account_suspender.suspend_account(resident_id)
        except Exception:
            self.db.rollback()
            logger.exception("Account suspension failed for resident %s; flag kept", resident_id)

        user_ref = aggregate.resident.user_ref if aggregate.resident else None
        if user_ref:
            record = await self.dispatcher.send(
                user_ref,
                CHANNEL_PUSH,
                SUSPENSION_TITLE,
                SUSPENSION_BODY,
                suspension_payload(now, aggregate.amount_owed),
            )
            logger.info("Suspension notice %s for resident %s (sent=%s)", record.id, aggregate.resident_id, record.sent)
        logger.info("Resident %s suspended for delinquency", aggregate.resident_id)
        return True
