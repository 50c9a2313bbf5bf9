"""Device registry: which push-capable installs belong to which user.

Every write is keyed by ``(user_ref, device_id)`` or by row id.  Rows are
never deleted: logout and idle cleanup only flip ``active``.
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from community_dispatch.core.errors import NotFoundError, ValidationError
from community_dispatch.core.timeutil import utcnow
from community_dispatch.db.models import DeviceRegistration
from community_dispatch.db.repositories import DeviceRegistrationRepository

logger = logging.getLogger(__name__)

VALID_PLATFORMS = frozenset({"android", "ios", "web"})


class DeviceRegistry:
    """Register, rotate and deactivate device push registrations."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.devices = DeviceRegistrationRepository(db_session)

    # -- register -----------------------------------------------------------

    def register(
        self,
        user_ref: str,
        device_id: str | None,
        token: str | None,
        platform: str | None,
        app_version: str | None = None,
        metadata: dict | None = None,
        *,
        now: datetime | None = None,
    ) -> DeviceRegistration:
        """Upsert the registration for ``(user_ref, device_id)`` and activate it."""
        missing = [
            name
            for name, value in (("device_id", device_id), ("token", token), ("platform", platform))
            if not value or not str(value).strip()
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        platform = platform.strip().lower()
        if platform not in VALID_PLATFORMS:
            raise ValidationError(
                f"Unknown platform {platform!r}; must be one of {sorted(VALID_PLATFORMS)}"
            )

        now = now or utcnow()
        existing = self.devices.get_for_user(user_ref, device_id)
        if existing is None:
            registration = self.devices.create(
                user_ref=user_ref,
                device_id=device_id,
                push_token=token,
                platform=platform,
                app_version=app_version,
                device_metadata=metadata or {},
                active=True,
                last_activity=now,
            )
            logger.info("Registered device %s for user %s", device_id, user_ref)
            return registration

        changes = {
            "push_token": token,
            "platform": platform,
            "app_version": app_version,
            "active": True,
            "last_activity": now,
        }
        if metadata is not None:
            changes["device_metadata"] = metadata
        self.devices.update(existing, **changes)
        logger.info("Refreshed device %s for user %s", device_id, user_ref)
        return existing

    # -- deactivate ---------------------------------------------------------

    def deactivate(self, device_id: str, user_ref: str) -> DeviceRegistration | None:
        """Flip ``active`` off; ``None`` when the user has no such device."""
        registration = self.devices.get_for_user(user_ref, device_id)
        if registration is None:
            return None
        if registration.active:
            self.devices.update(registration, active=False)
            logger.info("Deactivated device %s for user %s", device_id, user_ref)
        return registration

    # -- rotate -------------------------------------------------------------

    def rotate_token(
        self,
        user_ref: str,
        device_id: str,
        old_token: str,
        new_token: str,
        *,
        now: datetime | None = None,
    ) -> DeviceRegistration:
        """Replace the push token only if the stored one still equals *old_token*."""
        if not new_token or not new_token.strip():
            raise ValidationError("new_token must be non-empty")

        swapped = self.devices.swap_token(user_ref, device_id, old_token, new_token, now or utcnow())
        if not swapped:
            raise NotFoundError(f"Device {device_id} not found or token does not match")

        registration = self.devices.get_for_user(user_ref, device_id)
        self.db.refresh(registration)
        logger.info("Rotated push token for device %s", device_id)
        return registration

    # -- queries ------------------------------------------------------------

    def list_active(self, user_ref: str) -> list[DeviceRegistration]:
        return self.devices.list_active(user_ref)

    def list_for_user(self, user_ref: str) -> list[DeviceRegistration]:
        return self.devices.list_for_user(user_ref)

    def deactivate_stale(self, cutoff: datetime) -> int:
        """Deactivate devices idle since before *cutoff*, one row at a time."""
        deactivated = 0
        for registration_id in self.devices.idle_ids(cutoff):
            if self.devices.deactivate_if_idle(registration_id, cutoff):
                deactivated += 1
        if deactivated:
            logger.info("Deactivated %d idle devices", deactivated)
        return deactivated
