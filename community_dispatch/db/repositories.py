from __future__ import annotations

from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from community_dispatch.db import models
from community_dispatch.delinquency.state import apply_state, recompute_delinquency, snapshot

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> ModelT:
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.db.flush()
        return entity

    def get(self, entity_id: UUID) -> ModelT | None:
        return self.db.get(self.model, entity_id)

    def list(self, limit: int = 100, offset: int = 0) -> list[ModelT]:
        stmt = select(self.model).offset(offset).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def update(self, entity: ModelT, **kwargs) -> ModelT:
        for key, value in kwargs.items():
            setattr(entity, key, value)
        self.db.flush()
        return entity

    def delete(self, entity: ModelT) -> None:
        self.db.delete(entity)
        self.db.flush()

    def count(self) -> int:
        return self.db.execute(select(func.count()).select_from(self.model)).scalar_one()


class AddressRepository(BaseRepository[models.Address]):
    model = models.Address


class ResidentRepository(BaseRepository[models.Resident]):
    model = models.Resident

    def _active_user_refs(self, *criteria) -> list[str]:
        stmt = (
            select(models.Resident.user_ref)
            .where(
                models.Resident.status == "active",
                models.Resident.user_ref.is_not(None),
                *criteria,
            )
            .distinct()
        )
        return list(self.db.execute(stmt).scalars().all())

    def active_user_refs(self) -> list[str]:
        return self._active_user_refs()

    def active_user_refs_on_street(self, street_id: UUID) -> list[str]:
        addresses = select(models.Address.id).where(models.Address.street_id == street_id)
        return self._active_user_refs(models.Resident.address_id.in_(addresses))

    def active_user_refs_at_address(self, address_id: UUID) -> list[str]:
        return self._active_user_refs(models.Resident.address_id == address_id)


class DelinquencyRepository(BaseRepository[models.DelinquencyAggregate]):
    model = models.DelinquencyAggregate

    def get_by_resident(self, resident_id: UUID) -> models.DelinquencyAggregate | None:
        stmt = select(models.DelinquencyAggregate).where(models.DelinquencyAggregate.resident_id == resident_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def save(self, aggregate: models.DelinquencyAggregate, now: datetime) -> models.DelinquencyAggregate:
        """Recompute derived fields from the current balance, then flush."""
        apply_state(aggregate, recompute_delinquency(snapshot(aggregate), now))
        if aggregate not in self.db:
            self.db.add(aggregate)
        self.db.flush()
        return aggregate

    def delinquent_ids(self) -> list[UUID]:
        stmt = (
            select(models.DelinquencyAggregate.id)
            .where(
                models.DelinquencyAggregate.is_delinquent.is_(True),
                models.DelinquencyAggregate.amount_owed > 0,
            )
            .order_by(models.DelinquencyAggregate.days_in_arrears.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def suspension_candidate_ids(self, threshold_days: int) -> list[UUID]:
        stmt = select(models.DelinquencyAggregate.id).where(
            models.DelinquencyAggregate.is_delinquent.is_(True),
            models.DelinquencyAggregate.amount_owed > 0,
            models.DelinquencyAggregate.days_in_arrears >= threshold_days,
            models.DelinquencyAggregate.is_suspended_for_delinquency.is_(False),
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_delinquent(self, limit: int = 100, offset: int = 0) -> list[models.DelinquencyAggregate]:
        stmt = (
            select(models.DelinquencyAggregate)
            .where(models.DelinquencyAggregate.is_delinquent.is_(True))
            .order_by(models.DelinquencyAggregate.days_in_arrears.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())


class DeviceRegistrationRepository(BaseRepository[models.DeviceRegistration]):
    model = models.DeviceRegistration

    def get_for_user(self, user_ref: str, device_id: str) -> models.DeviceRegistration | None:
        stmt = select(models.DeviceRegistration).where(
            models.DeviceRegistration.user_ref == user_ref,
            models.DeviceRegistration.device_id == device_id,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_active(self, user_ref: str) -> list[models.DeviceRegistration]:
        stmt = (
            select(models.DeviceRegistration)
            .where(
                models.DeviceRegistration.user_ref == user_ref,
                models.DeviceRegistration.active.is_(True),
            )
            .order_by(models.DeviceRegistration.created_at.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_user(self, user_ref: str) -> list[models.DeviceRegistration]:
        stmt = (
            select(models.DeviceRegistration)
            .where(models.DeviceRegistration.user_ref == user_ref)
            .order_by(models.DeviceRegistration.updated_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def swap_token(
        self,
        user_ref: str,
        device_id: str,
        old_token: str,
        new_token: str,
        now: datetime,
    ) -> bool:
        """Conditional single-row update; ``False`` when the stored token differs."""
        stmt = (
            update(models.DeviceRegistration)
            .where(
                models.DeviceRegistration.user_ref == user_ref,
                models.DeviceRegistration.device_id == device_id,
                models.DeviceRegistration.push_token == old_token,
            )
            .values(push_token=new_token, last_activity=now)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def idle_ids(self, cutoff: datetime) -> list[UUID]:
        stmt = select(models.DeviceRegistration.id).where(
            models.DeviceRegistration.active.is_(True),
            models.DeviceRegistration.last_activity < cutoff,
        )
        return list(self.db.execute(stmt).scalars().all())

    def deactivate_if_idle(self, registration_id: UUID, cutoff: datetime) -> bool:
        """Deactivate one row and drop its push token unless it saw activity after *cutoff* meanwhile."""
        stmt = (
            update(models.DeviceRegistration)
            .where(
                models.DeviceRegistration.id == registration_id,
                models.DeviceRegistration.active.is_(True),
                models.DeviceRegistration.last_activity < cutoff,
            )
            .values(active=False, push_token=None)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1


class NotificationRecordRepository(BaseRepository[models.NotificationRecord]):
    model = models.NotificationRecord

    def list_for_user(
        self,
        user_ref: str,
        *,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> list[models.NotificationRecord]:
        stmt = select(models.NotificationRecord).where(models.NotificationRecord.user_ref == user_ref)
        if unread_only:
            stmt = stmt.where(
                models.NotificationRecord.read.is_(False),
                models.NotificationRecord.sent.is_(True),
            )
        stmt = stmt.order_by(models.NotificationRecord.created_at.desc()).offset(offset).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def count_for_user(self, user_ref: str, *, unread_only: bool = False) -> int:
        stmt = select(func.count()).select_from(models.NotificationRecord).where(
            models.NotificationRecord.user_ref == user_ref
        )
        if unread_only:
            stmt = stmt.where(
                models.NotificationRecord.read.is_(False),
                models.NotificationRecord.sent.is_(True),
            )
        return self.db.execute(stmt).scalar_one()

    def delete_read_before(self, cutoff: datetime) -> int:
        stmt = delete(models.NotificationRecord).where(
            models.NotificationRecord.read.is_(True),
            models.NotificationRecord.created_at < cutoff,
        ).execution_options(synchronize_session=False)
        return self.db.execute(stmt).rowcount


class NotificationDeliveryRepository(BaseRepository[models.NotificationDelivery]):
    model = models.NotificationDelivery

    def get_by_provider_message_id(self, message_id: str) -> models.NotificationDelivery | None:
        stmt = select(models.NotificationDelivery).where(
            models.NotificationDelivery.provider_message_id == message_id
        )
        return self.db.execute(stmt).scalars().first()

    def list_for_notification(self, notification_id: UUID) -> list[models.NotificationDelivery]:
        stmt = select(models.NotificationDelivery).where(
            models.NotificationDelivery.notification_id == notification_id
        )
        return list(self.db.execute(stmt).scalars().all())


class NotificationPreferenceRepository(BaseRepository[models.NotificationPreference]):
    model = models.NotificationPreference

    def get_for_user(self, user_ref: str, category: str) -> models.NotificationPreference | None:
        stmt = select(models.NotificationPreference).where(
            models.NotificationPreference.user_ref == user_ref,
            models.NotificationPreference.category == category,
        )
        return self.db.execute(stmt).scalar_one_or_none()


class PublicationRepository(BaseRepository[models.Publication]):
    model = models.Publication

    def due_ids(self, now: datetime) -> list[UUID]:
        stmt = (
            select(models.Publication.id)
            .where(
                models.Publication.scheduled.is_(True),
                models.Publication.notifications_sent.is_(False),
                models.Publication.scheduled_at <= now,
            )
            .order_by(models.Publication.scheduled_at.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_scheduled(self) -> list[models.Publication]:
        stmt = (
            select(models.Publication)
            .where(models.Publication.scheduled.is_(True))
            .order_by(models.Publication.scheduled_at.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def count_pending(self) -> int:
        stmt = select(func.count()).select_from(models.Publication).where(
            models.Publication.scheduled.is_(True),
            models.Publication.notifications_sent.is_(False),
        )
        return self.db.execute(stmt).scalar_one()

    def mark_notifications_sent(self, publication_id: UUID) -> bool:
        """Flip the flag false→true; ``False`` if another run already did."""
        stmt = (
            update(models.Publication)
            .where(
                models.Publication.id == publication_id,
                models.Publication.notifications_sent.is_(False),
            )
            .values(notifications_sent=True)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1


class PublicationTargetRepository(BaseRepository[models.PublicationTarget]):
    model = models.PublicationTarget

    def list_for_publication(self, publication_id: UUID) -> list[models.PublicationTarget]:
        stmt = (
            select(models.PublicationTarget)
            .where(models.PublicationTarget.publication_id == publication_id)
            .order_by(models.PublicationTarget.target_type.asc())
        )
        return list(self.db.execute(stmt).scalars().all())
