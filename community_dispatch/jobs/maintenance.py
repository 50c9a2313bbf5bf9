"""Daily notification housekeeping: prune old read notifications, retire idle devices."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from community_dispatch.core.timeutil import utcnow
from community_dispatch.db.repositories import NotificationRecordRepository
from community_dispatch.devices.registry import DeviceRegistry

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceReport:
    notifications_deleted: int = 0
    devices_deactivated: int = 0


def run_maintenance(
    db_session: Session,
    *,
    retention_days: int,
    device_inactive_days: int,
    now: datetime | None = None,
) -> MaintenanceReport:
    now = now or utcnow()
    report = MaintenanceReport()

    deleted = NotificationRecordRepository(db_session).delete_read_before(now - timedelta(days=retention_days))
    report.notifications_deleted = deleted or 0
    db_session.commit()
    logger.info("Deleted %d read notifications older than %d days", report.notifications_deleted, retention_days)

    report.devices_deactivated = DeviceRegistry(db_session).deactivate_stale(
        now - timedelta(days=device_inactive_days)
    )
    db_session.commit()
    return report
