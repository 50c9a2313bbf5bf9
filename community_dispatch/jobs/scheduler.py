"""Explicit job scheduler owned by the process lifespan.

Each job is an ``asyncio.Task`` looping *run → compute next firing → sleep*,
so a job never overlaps itself, while different jobs (and request handling)
interleave freely on the event loop.  Daily jobs recompute the next wall-clock
firing in the community time zone after every run instead of sleeping a fixed
24 hours, which keeps them pinned to the configured hour across DST changes.

Each sweep opens its own session and closes it when done.  Sweep methods are
public so tests and the manual-release endpoint can call them directly.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from community_dispatch.core.settings import Settings, get_settings
from community_dispatch.core.timeutil import as_utc, utcnow
from community_dispatch.delinquency.suspension import AccountSuspender, ResidentAccountSuspender
from community_dispatch.delinquency.tracker import DelinquencyTracker, SweepReport
from community_dispatch.jobs.maintenance import MaintenanceReport, run_maintenance
from community_dispatch.notifications.dispatcher import NotificationDispatcher
from community_dispatch.notifications.push_client import PushClient
from community_dispatch.publications.release import PublicationReleaser, ReleaseReport

logger = logging.getLogger(__name__)


def next_daily_run(now: datetime, hour: int, tz_name: str) -> datetime:
    """Next occurrence of ``hour:00`` local time strictly after *now* (UTC result)."""
    if not 0 <= hour <= 23:
        raise ValueError(f"Daily job hour must be within 0..23, got {hour}")
    tz = ZoneInfo(tz_name)
    local_now = as_utc(now).astimezone(tz)
    target = local_now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= local_now:
        target = (local_now + timedelta(days=1)).replace(hour=hour, minute=0, second=0, microsecond=0)
    return target.astimezone(timezone.utc)


class JobScheduler:
    """Own the background timers; ``start()`` from the lifespan, ``stop()`` on shutdown."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        push_client: PushClient,
        *,
        settings: Settings | None = None,
        account_suspender_factory: Callable[[Session], AccountSuspender] = ResidentAccountSuspender,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.push_client = push_client
        self.settings = settings or get_settings()
        self.account_suspender_factory = account_suspender_factory
        self.clock = clock
        self._tasks: list[asyncio.Task] = []

    # -- sweeps -------------------------------------------------------------

    async def run_delinquency_sweep(self) -> SweepReport:
        with self.session_factory() as db:
            tracker = DelinquencyTracker(
                db,
                NotificationDispatcher(db, self.push_client),
                self.account_suspender_factory(db),
                timezone_name=self.settings.community_timezone,
            )
            return await tracker.run_daily_sweep(self.clock())

    async def run_publication_release(self) -> ReleaseReport:
        with self.session_factory() as db:
            releaser = PublicationReleaser(db, NotificationDispatcher(db, self.push_client))
            return await releaser.release_due(self.clock())

    async def run_maintenance(self) -> MaintenanceReport:
        with self.session_factory() as db:
            return run_maintenance(
                db,
                retention_days=self.settings.notification_retention_days,
                device_inactive_days=self.settings.device_inactive_days,
                now=self.clock(),
            )

    # -- lifecycle ----------------------------------------------------------

    def validate(self) -> None:
        """Fail fast on a schedule that could never fire correctly."""
        now = self.clock()
        next_daily_run(now, self.settings.delinquency_sweep_hour, self.settings.community_timezone)
        next_daily_run(now, self.settings.maintenance_sweep_hour, self.settings.community_timezone)
        if self.settings.publication_poll_interval_s <= 0:
            raise ValueError(
                f"PUBLICATION_POLL_INTERVAL_S must be positive, got {self.settings.publication_poll_interval_s}"
            )

    def start(self) -> None:
        if self._tasks:
            raise RuntimeError("JobScheduler already started")
        self.validate()
        settings = self.settings
        self._tasks = [
            asyncio.create_task(
                self._daily_loop(
                    "delinquency sweep",
                    self.run_delinquency_sweep,
                    settings.delinquency_sweep_hour,
                    run_at_start=True,
                )
            ),
            asyncio.create_task(
                self._interval_loop(
                    "publication release",
                    self.run_publication_release,
                    settings.publication_poll_interval_s,
                )
            ),
            asyncio.create_task(
                self._daily_loop("notification maintenance", self.run_maintenance, settings.maintenance_sweep_hour)
            ),
        ]
        logger.info(
            "Scheduler started: delinquency daily at %02d:00, publications every %ds, maintenance daily at %02d:00 (%s)",
            self.settings.delinquency_sweep_hour,
            self.settings.publication_poll_interval_s,
            self.settings.maintenance_sweep_hour,
            self.settings.community_timezone,
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    # -- loops --------------------------------------------------------------

    async def _run_guarded(self, name: str, job: Callable[[], Awaitable[object]]) -> None:
        try:
            result = await job()
            logger.info("Job %s finished: %s", name, result)
        except Exception:
            logger.exception("Job %s failed", name)

    async def _daily_loop(
        self,
        name: str,
        job: Callable[[], Awaitable[object]],
        hour: int,
        *,
        run_at_start: bool = False,
    ) -> None:
        if run_at_start:
            await self._run_guarded(name, job)
        while True:
            now = self.clock()
            target = next_daily_run(now, hour, self.settings.community_timezone)
            delay = (target - as_utc(now)).total_seconds()
            logger.info("Job %s next run at %s", name, target.isoformat())
            await asyncio.sleep(max(delay, 0))
            await self._run_guarded(name, job)

    async def _interval_loop(self, name: str, job: Callable[[], Awaitable[object]], interval_s: int) -> None:
        while True:
            await asyncio.sleep(interval_s)
            await self._run_guarded(name, job)
