"""Tests for the FastAPI routes.

Covers:
- caller identity via X-User-Id
- /device: register, list, deactivate, token rotation, test push
- /device/fcm-webhook: shared-secret auth and receipt reconciliation
- /notifications: inbox listing and mark-as-read
- /publications/scheduled: status and manual release
- /delinquency: read-only aggregate views
"""
from __future__ import annotations

import asyncio
from datetime import timedelta
from uuid import uuid4

from conftest import T0, WEBHOOK_SECRET, RecordingSuspender, make_device, make_resident

from community_dispatch.core.timeutil import utcnow
from community_dispatch.db.models import (
    NotificationDelivery,
    NotificationRecord,
    Publication,
    PublicationTarget,
)
from community_dispatch.delinquency.tracker import DelinquencyTracker
from community_dispatch.notifications.dispatcher import NotificationDispatcher

USER = {"X-User-Id": "user-1"}


def _register(client, device_id="phone-1", token="tok-1", platform="android"):
    return client.post(
        "/device/register",
        json={"device_id": device_id, "token_fcm": token, "platform": platform, "app_version": "1.0.0"},
        headers=USER,
    )


# ===========================================================================
# identity
# ===========================================================================

class TestIdentity:
    def test_missing_user_header_is_401(self, client):
        assert client.get("/device").status_code == 401
        assert client.get("/notifications").status_code == 401

    def test_blank_user_header_is_401(self, client):
        assert client.get("/device", headers={"X-User-Id": "  "}).status_code == 401


# ===========================================================================
# /device
# ===========================================================================

class TestDeviceRoutes:
    def test_register_and_list(self, client):
        response = _register(client)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["device"]["device_id"] == "phone-1"
        assert body["device"]["active"] is True
        assert "push_token" not in body["device"]

        listed = client.get("/device", headers=USER).json()["devices"]
        assert [d["device_id"] for d in listed] == ["phone-1"]

    def test_register_validation_errors(self, client):
        assert _register(client, platform="blackberry").status_code == 400
        assert _register(client, token="").status_code == 400

    def test_deactivate(self, client):
        _register(client)

        assert client.post("/device/deactivate", json={}, headers=USER).status_code == 400
        assert client.post("/device/deactivate", json={"device_id": "ghost"}, headers=USER).status_code == 404

        response = client.post("/device/deactivate", json={"device_id": "phone-1"}, headers=USER)
        assert response.status_code == 200
        assert response.json()["device"]["active"] is False

    def test_token_rotation(self, client):
        _register(client, token="tok-old")

        stale = client.post(
            "/device/fcm-token-update",
            json={"device_id": "phone-1", "old_token": "tok-wrong", "new_token": "tok-new"},
            headers=USER,
        )
        assert stale.status_code == 404

        ok = client.post(
            "/device/fcm-token-update",
            json={"device_id": "phone-1", "old_token": "tok-old", "new_token": "tok-new"},
            headers=USER,
        )
        assert ok.status_code == 200

    def test_test_push_reaches_registered_device(self, client, push_client):
        _register(client, token="tok-test")

        response = client.post("/device/test-push", json={"title": "Ping"}, headers=USER)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["notification"]["sent"] is True
        assert push_client.tokens == ["tok-test"]

    def test_test_push_without_devices(self, client, push_client):
        body = client.post("/device/test-push", json={}, headers=USER).json()

        assert body["success"] is False
        assert body["notification"]["error"] == "no active devices"
        assert push_client.sent == []


# ===========================================================================
# /device/fcm-webhook
# ===========================================================================

class TestWebhook:
    def _pushed(self, client, db_session):
        _register(client, token="tok-1")
        client.post("/device/test-push", json={}, headers=USER)
        return db_session.query(NotificationDelivery).one()

    def test_missing_or_wrong_secret_is_401(self, client):
        receipt = {"message_id": "msg-tok-1", "status": "delivered"}

        assert client.post("/device/fcm-webhook", json=receipt).status_code == 401
        assert (
            client.post("/device/fcm-webhook", json=receipt, headers={"X-FCM-Secret": "nope"}).status_code == 401
        )

    def test_delivered_receipt_reconciled(self, client, db_session):
        delivery = self._pushed(client, db_session)

        response = client.post(
            "/device/fcm-webhook",
            json={"messageId": "msg-tok-1", "status": "delivered"},
            headers={"X-FCM-Secret": WEBHOOK_SECRET},
        )

        assert response.status_code == 200
        assert response.text == "OK"
        db_session.refresh(delivery)
        assert delivery.status == "delivered"

    def test_unknown_and_malformed_receipts_still_ok(self, client):
        headers = {"X-FCM-Secret": WEBHOOK_SECRET}

        unknown = client.post("/device/fcm-webhook", json={"message_id": "x", "status": "delivered"}, headers=headers)
        malformed = client.post("/device/fcm-webhook", json={"what": "ever"}, headers=headers)
        not_json = client.post(
            "/device/fcm-webhook",
            content=b"not json",
            headers={**headers, "Content-Type": "text/plain"},
        )

        assert [r.status_code for r in (unknown, malformed, not_json)] == [200, 200, 200]
        assert not_json.text == "OK"


# ===========================================================================
# /notifications
# ===========================================================================

class TestNotificationRoutes:
    def _seed(self, db_session, push_client, count=3):
        dispatcher = NotificationDispatcher(db_session, push_client)
        return [
            asyncio.run(dispatcher.send("user-1", "in_app", f"Notice {i}", "body"))
            for i in range(count)
        ]

    def test_list_with_pagination(self, client, db_session, push_client):
        self._seed(db_session, push_client)

        body = client.get("/notifications", params={"limit": 2}, headers=USER).json()

        assert body["total"] == 3
        assert len(body["notifications"]) == 2
        assert body["has_more"] is True

    def test_mark_read_then_unread_filter(self, client, db_session, push_client):
        records = self._seed(db_session, push_client)

        response = client.post(f"/notifications/{records[0].id}/read", headers=USER)
        assert response.status_code == 200
        assert response.json()["read"] is True

        unread = client.get("/notifications", params={"unread_only": True}, headers=USER).json()
        assert unread["total"] == 2

        again = client.post(f"/notifications/{records[0].id}/read", headers=USER)
        assert again.status_code == 404

    def test_cannot_read_someone_elses_notification(self, client, db_session, push_client):
        records = self._seed(db_session, push_client, count=1)

        response = client.post(f"/notifications/{records[0].id}/read", headers={"X-User-Id": "user-2"})

        assert response.status_code == 404
        assert db_session.get(NotificationRecord, records[0].id).read is False


# ===========================================================================
# /publications/scheduled
# ===========================================================================

class TestPublicationRoutes:
    def test_status_and_manual_release(self, client, db_session):
        make_resident(db_session, "user-1")
        make_device(db_session)
        due = Publication(title="Gate repair", body="Gate closed", scheduled=True, scheduled_at=utcnow() - timedelta(minutes=2))
        later = Publication(title="Party", body="Saturday", scheduled=True, scheduled_at=utcnow() + timedelta(days=2))
        db_session.add_all([due, later])
        db_session.flush()
        db_session.add(PublicationTarget(publication_id=due.id, target_type="all"))
        db_session.flush()

        status = client.get("/publications/scheduled/status").json()
        assert status["summary"] == {"total": 2, "pending": 2, "sent": 0, "overdue": 1}

        released = client.post("/publications/scheduled/release").json()
        assert released["released"] == [str(due.id)]
        assert released["recipients_attempted"] == 1
        assert released["pending"] == 1

        status = client.get("/publications/scheduled/status").json()
        assert status["summary"]["sent"] == 1


# ===========================================================================
# /delinquency
# ===========================================================================

class TestDelinquencyRoutes:
    def test_lookup_and_list(self, client, db_session, push_client):
        resident = make_resident(db_session)
        tracker = DelinquencyTracker(
            db_session, NotificationDispatcher(db_session, push_client), RecordingSuspender(), timezone_name="UTC"
        )
        tracker.set_balance(resident.id, "80.25", now=T0)

        one = client.get(f"/delinquency/{resident.id}")
        assert one.status_code == 200
        assert one.json()["amount_owed"] == "80.25"
        assert one.json()["is_delinquent"] is True

        listed = client.get("/delinquency").json()
        assert [row["resident_id"] for row in listed] == [str(resident.id)]

    def test_unknown_resident_is_404(self, client):
        assert client.get(f"/delinquency/{uuid4()}").status_code == 404
