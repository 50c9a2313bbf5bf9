from datetime import timedelta

from conftest import T0, make_device

from community_dispatch.db.models import DeviceRegistration, NotificationRecord
from community_dispatch.jobs.maintenance import run_maintenance


def _record(db, *, read: bool, age_days: int, title: str) -> NotificationRecord:
    record = NotificationRecord(
        user_ref="user-1",
        channel="in_app",
        title=title,
        body="body",
        sent=True,
        read=read,
        created_at=T0 - timedelta(days=age_days),
    )
    db.add(record)
    db.flush()
    return record


def test_prunes_only_old_read_notifications(db_session):
    _record(db_session, read=True, age_days=120, title="old read")
    _record(db_session, read=False, age_days=120, title="old unread")
    _record(db_session, read=True, age_days=10, title="recent read")
    db_session.commit()

    report = run_maintenance(db_session, retention_days=90, device_inactive_days=30, now=T0)

    assert report.notifications_deleted == 1
    titles = {r.title for r in db_session.query(NotificationRecord).all()}
    assert titles == {"old unread", "recent read"}


def test_deactivates_idle_devices(db_session):
    make_device(db_session, device_id="idle", token="tok-idle", last_activity=T0 - timedelta(days=31))
    make_device(db_session, device_id="busy", token="tok-busy", last_activity=T0 - timedelta(days=1))
    db_session.commit()

    report = run_maintenance(db_session, retention_days=90, device_inactive_days=30, now=T0)

    assert report.devices_deactivated == 1
    states = {d.device_id: d.active for d in db_session.query(DeviceRegistration).all()}
    assert states == {"idle": False, "busy": True}


def test_nothing_to_do(db_session):
    report = run_maintenance(db_session, retention_days=90, device_inactive_days=30, now=T0)

    assert report.notifications_deleted == 0
    assert report.devices_deactivated == 0
