"""Notification dispatcher.

``send()`` persists the ``NotificationRecord`` first, then fans a push
notification out to every active device of the user concurrently.  Each
device attempt becomes an explicit :class:`DeviceOutcome` (and a
``NotificationDelivery`` row); the record is marked sent when at least one
outcome succeeded.  Delivery failures are written onto the record, never
raised.  There is no automatic retry.

Safety: push tokens are never logged; only device and notification ids.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from community_dispatch.core.errors import NotFoundError, ValidationError
from community_dispatch.core.timeutil import utcnow
from community_dispatch.db.models import DeviceRegistration, NotificationDelivery, NotificationRecord
from community_dispatch.db.repositories import (
    NotificationDeliveryRepository,
    NotificationPreferenceRepository,
    NotificationRecordRepository,
)
from community_dispatch.devices.registry import DeviceRegistry
from community_dispatch.notifications.push_client import PushClient, PushResult

logger = logging.getLogger(__name__)

CHANNEL_PUSH = "push"
CHANNEL_IN_APP = "in_app"
VALID_CHANNELS = frozenset({CHANNEL_PUSH, CHANNEL_IN_APP})

NO_ACTIVE_DEVICES = "no active devices"

# Provider error codes meaning the token will never be deliverable again
UNREGISTERED_ERRORS = frozenset({"UNREGISTERED", "NotRegistered", "InvalidRegistration"})

# payload["type"] → preference category
_CATEGORY_BY_TYPE: dict[str, str] = {
    "visit": "visits",
    "payment": "payments",
    "bulletin": "bulletins",
    "package": "packages",
    "chat": "chat",
    "access": "access",
}

_MAX_ERROR_LENGTH = 255


def notification_category(payload: dict[str, Any] | None) -> str:
    return _CATEGORY_BY_TYPE.get((payload or {}).get("type"), "general")


@dataclass(frozen=True)
class DeviceOutcome:
    """Result of one push attempt against one device."""

    device_id: str
    registration_id: UUID
    success: bool
    provider_message_id: str | None = None
    error: str | None = None


class DeliveryReceipt(BaseModel):
    """Asynchronous acknowledgement posted by the push provider."""

    model_config = ConfigDict(extra="allow")

    message_id: str = Field(validation_alias=AliasChoices("message_id", "messageId"), min_length=1)
    status: Literal["delivered", "failed"]
    error: str | None = None
    timestamp: datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class NotificationDispatcher:
    """Create notification records and deliver them to a user's devices."""

    def __init__(self, db_session: Session, push_client: PushClient) -> None:
        self.db = db_session
        self.push_client = push_client
        self.registry = DeviceRegistry(db_session)
        self.records = NotificationRecordRepository(db_session)
        self.deliveries = NotificationDeliveryRepository(db_session)
        self.preferences = NotificationPreferenceRepository(db_session)

    # -- send ---------------------------------------------------------------

    async def send(
        self,
        user_ref: str,
        channel: str,
        title: str,
        body: str,
        payload: dict[str, Any] | None = None,
        *,
        action_required: bool = False,
        action_type: str | None = None,
        action_payload: dict[str, Any] | None = None,
    ) -> NotificationRecord:
        """Persist and deliver one notification; returns the finalized record."""
        if channel not in VALID_CHANNELS:
            raise ValidationError(f"Unknown channel {channel!r}; must be one of {sorted(VALID_CHANNELS)}")
        if not user_ref:
            raise ValidationError("user_ref must be non-empty")
        if not title or not title.strip():
            raise ValidationError("title must be non-empty")
        if not body or not body.strip():
            raise ValidationError("body must be non-empty")

        payload = dict(payload or {})
        channel = self._effective_channel(user_ref, channel, payload)

        record = self.records.create(
            user_ref=user_ref,
            channel=channel,
            title=title,
            body=body,
            payload=payload,
            sent=False,
            action_required=action_required,
            action_type=action_type,
            action_payload=action_payload,
        )

        if channel == CHANNEL_IN_APP:
            self._finalize(record, sent=True)
            return record

        devices = self.registry.list_active(user_ref)
        if not devices:
            logger.info("Notification %s not pushed: user %s has no active devices", record.id, user_ref)
            self._finalize(record, sent=False, error=NO_ACTIVE_DEVICES)
            return record

        outcomes = await self.fan_out(devices, title, body, payload)
        self._record_deliveries(record, outcomes)

        if any(outcome.success for outcome in outcomes):
            self._finalize(record, sent=True)
        else:
            first_error = next(o.error for o in outcomes if not o.success)
            self._finalize(record, sent=False, error=first_error)
        return record

    async def fan_out(
        self,
        devices: list[DeviceRegistration],
        title: str,
        body: str,
        payload: dict[str, Any],
    ) -> list[DeviceOutcome]:
        """Push to every device concurrently; one outcome per device, in device order."""
        results = await asyncio.gather(
            *(self.push_client.send_push(device.push_token, title, body, payload) for device in devices),
            return_exceptions=True,
        )
        return [self._to_outcome(device, result) for device, result in zip(devices, results)]

    @staticmethod
    def _to_outcome(device: DeviceRegistration, result: PushResult | BaseException) -> DeviceOutcome:
        if isinstance(result, Exception):
            logger.warning("Push to device %s failed: %s", device.device_id, result)
            return DeviceOutcome(
                device_id=device.device_id,
                registration_id=device.id,
                success=False,
                error=str(result) or type(result).__name__,
            )
        if isinstance(result, BaseException):
            raise result
        if result.success:
            return DeviceOutcome(
                device_id=device.device_id,
                registration_id=device.id,
                success=True,
                provider_message_id=result.provider_message_id,
            )
        logger.warning("Push to device %s rejected: %s", device.device_id, result.error)
        return DeviceOutcome(
            device_id=device.device_id,
            registration_id=device.id,
            success=False,
            error=result.error or "push rejected by provider",
        )

    def _record_deliveries(self, record: NotificationRecord, outcomes: list[DeviceOutcome]) -> None:
        now = utcnow()
        for outcome in outcomes:
            self.deliveries.create(
                notification_id=record.id,
                device_registration_id=outcome.registration_id,
                status="sent" if outcome.success else "failed",
                provider_message_id=outcome.provider_message_id,
                sent_at=now if outcome.success else None,
                last_error=_truncate(outcome.error),
                provider_metadata={},
            )

    def _finalize(self, record: NotificationRecord, *, sent: bool, error: str | None = None) -> None:
        if record.sent or record.delivery_error is not None:
            raise ValueError(f"NotificationRecord {record.id} already has a delivery outcome")
        record.sent = sent
        record.sent_at = utcnow() if sent else None
        record.delivery_error = _truncate(error)
        self.db.flush()

    def _effective_channel(self, user_ref: str, channel: str, payload: dict[str, Any]) -> str:
        if channel != CHANNEL_PUSH:
            return channel
        preference = self.preferences.get_for_user(user_ref, notification_category(payload))
        if preference is not None and not preference.receive_push:
            return CHANNEL_IN_APP
        return channel

    # -- receipts -----------------------------------------------------------

    def handle_delivery_receipt(self, raw_receipt: Any) -> NotificationDelivery | None:
        """Reconcile a provider receipt; unknown, duplicate or malformed ones are ignored."""
        try:
            receipt = DeliveryReceipt.model_validate(raw_receipt)
        except PydanticValidationError:
            logger.warning("Ignoring malformed delivery receipt")
            return None

        delivery = self.deliveries.get_by_provider_message_id(receipt.message_id)
        if delivery is None:
            logger.info("Ignoring receipt for unknown message %s", receipt.message_id)
            return None

        if delivery.status == "delivered" or delivery.status == receipt.status:
            logger.debug("Duplicate receipt for message %s", receipt.message_id)
            return delivery

        received_at = receipt.timestamp or utcnow()
        metadata = dict(delivery.provider_metadata or {})
        metadata.update(receipt.model_extra or {})
        metadata["last_receipt_at"] = received_at.isoformat()

        if receipt.status == "delivered":
            self.deliveries.update(delivery, status="delivered", delivered_at=received_at, provider_metadata=metadata)
        else:
            self.deliveries.update(
                delivery,
                status="failed",
                last_error=_truncate(receipt.error or "delivery failed"),
                provider_metadata=metadata,
            )
            if receipt.error in UNREGISTERED_ERRORS:
                device = delivery.device
                if device.active:
                    self.registry.devices.update(device, active=False)
                    logger.info("Deactivated device %s after provider reported %s", device.device_id, receipt.error)

        logger.info("Delivery %s reconciled as %s", delivery.id, delivery.status)
        return delivery

    # -- inbox --------------------------------------------------------------

    def list_for_user(
        self,
        user_ref: str,
        *,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[NotificationRecord], int]:
        items = self.records.list_for_user(user_ref, unread_only=unread_only, limit=limit, offset=offset)
        return items, self.records.count_for_user(user_ref, unread_only=unread_only)

    def mark_as_read(self, notification_id: UUID, user_ref: str) -> NotificationRecord:
        record = self.records.get(notification_id)
        if record is None or record.user_ref != user_ref or record.read:
            raise NotFoundError(f"Notification {notification_id} not found or already read")
        return self.records.update(record, read=True, read_at=utcnow())


def _truncate(message: str | None) -> str | None:
    if message is None:
        return None
    return message[:_MAX_ERROR_LENGTH]
