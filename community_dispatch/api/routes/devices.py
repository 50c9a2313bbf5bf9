"""Device routes: registration, token rotation, test push and the provider webhook.

The webhook is authenticated by a shared secret instead of the caller
identity header, and answers ``200 OK`` for every authenticated request so
the provider never enters a redelivery loop.
"""
from __future__ import annotations

import hmac
import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import AliasChoices, BaseModel, Field

from community_dispatch.api.deps import get_current_user_ref, get_device_registry, get_dispatcher
from community_dispatch.core.errors import NotFoundError, ValidationError
from community_dispatch.core.settings import get_settings
from community_dispatch.core.timeutil import utcnow
from community_dispatch.db.models import DeviceRegistration
from community_dispatch.devices.registry import DeviceRegistry
from community_dispatch.notifications.dispatcher import CHANNEL_PUSH, NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/device", tags=["device"])


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class RegisterBody(BaseModel):
    device_id: str | None = None
    token: str | None = Field(default=None, validation_alias=AliasChoices("token", "token_fcm"))
    platform: str | None = None
    app_version: str | None = None
    metadata: dict[str, Any] | None = None


class DeactivateBody(BaseModel):
    device_id: str | None = None


class TokenUpdateBody(BaseModel):
    device_id: str
    old_token: str
    new_token: str


class TestPushBody(BaseModel):
    title: str = "Test"
    message: str = "This is a test notification"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _serialize_device(device: DeviceRegistration) -> dict:
    return {
        "id": str(device.id),
        "device_id": device.device_id,
        "platform": device.platform,
        "app_version": device.app_version,
        "active": device.active,
        "last_activity": device.last_activity.isoformat() if device.last_activity else None,
    }


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/register", summary="Register or refresh a push device")
def register_device(
    body: RegisterBody,
    user_ref: str = Depends(get_current_user_ref),
    registry: DeviceRegistry = Depends(get_device_registry),
):
    try:
        device = registry.register(
            user_ref,
            body.device_id,
            body.token,
            body.platform,
            app_version=body.app_version,
            metadata=body.metadata,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"success": True, "device": _serialize_device(device)}


@router.post("/deactivate", summary="Deactivate a device (logout)")
def deactivate_device(
    body: DeactivateBody,
    user_ref: str = Depends(get_current_user_ref),
    registry: DeviceRegistry = Depends(get_device_registry),
):
    if not body.device_id:
        raise HTTPException(status_code=400, detail="device_id is required")
    device = registry.deactivate(body.device_id, user_ref)
    if device is None:
        raise HTTPException(status_code=404, detail=f"Device {body.device_id} not found")
    return {"success": True, "device": _serialize_device(device)}


@router.get("", summary="List the caller's devices")
def list_devices(
    user_ref: str = Depends(get_current_user_ref),
    registry: DeviceRegistry = Depends(get_device_registry),
):
    return {"devices": [_serialize_device(d) for d in registry.list_for_user(user_ref)]}


@router.post("/fcm-token-update", summary="Rotate a device push token")
def update_token(
    body: TokenUpdateBody,
    user_ref: str = Depends(get_current_user_ref),
    registry: DeviceRegistry = Depends(get_device_registry),
):
    try:
        device = registry.rotate_token(user_ref, body.device_id, body.old_token, body.new_token)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"success": True, "device": _serialize_device(device)}


@router.post("/test-push", summary="Send a test push to the caller")
async def test_push(
    body: TestPushBody,
    user_ref: str = Depends(get_current_user_ref),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    try:
        record = await dispatcher.send(
            user_ref,
            CHANNEL_PUSH,
            body.title,
            body.message,
            {"test": True, "timestamp": utcnow().isoformat()},
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {
        "success": record.sent,
        "notification": {
            "id": str(record.id),
            "title": record.title,
            "message": record.body,
            "channel": record.channel,
            "sent": record.sent,
            "sent_at": record.sent_at.isoformat() if record.sent_at else None,
            "error": record.delivery_error,
        },
    }


@router.post("/fcm-webhook", summary="Push provider delivery receipts", response_class=PlainTextResponse)
async def fcm_webhook(
    request: Request,
    x_fcm_secret: str | None = Header(default=None),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    expected = get_settings().fcm_webhook_secret
    if not expected or not x_fcm_secret or not hmac.compare_digest(x_fcm_secret.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        receipt = await request.json()
    except ValueError:
        logger.warning("Delivery webhook received a non-JSON body")
        return PlainTextResponse("OK")

    try:
        dispatcher.handle_delivery_receipt(receipt)
    except Exception:
        logger.exception("Delivery receipt reconciliation failed")
        dispatcher.db.rollback()
    return PlainTextResponse("OK")
