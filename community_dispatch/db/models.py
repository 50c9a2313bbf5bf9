from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text as sql_text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from community_dispatch.db.base import Base


class Address(Base):
    """Read-only view of the address hierarchy owned by resident management."""

    __tablename__ = "addresses"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    street_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    label: Mapped[str | None] = mapped_column(String(256), nullable=True)

    residents: Mapped[list[Resident]] = relationship(back_populates="address")


class Resident(Base):
    """Read-only view of a resident; ``status`` is written only by account suspension."""

    __tablename__ = "residents"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_ref: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    address_id: Mapped[UUID | None] = mapped_column(ForeignKey("addresses.id", ondelete="SET NULL"), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="active", server_default=sql_text("'active'")
    )

    address: Mapped[Address | None] = relationship(back_populates="residents")
    delinquency: Mapped[DelinquencyAggregate | None] = relationship(back_populates="resident")


class DelinquencyAggregate(Base):
    """Arrears, aging and suspension state of one household.

    Derived fields (``is_delinquent``, ``days_in_arrears``,
    ``first_delinquency_date``, suspension reset) are recomputed by
    :func:`community_dispatch.delinquency.state.recompute_delinquency` before
    every write.  Rows are never deleted.
    """

    __tablename__ = "delinquency_aggregates"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    resident_id: Mapped[UUID] = mapped_column(
        ForeignKey("residents.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    amount_owed: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"), server_default=sql_text("0")
    )
    is_delinquent: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sql_text("false")
    )
    days_in_arrears: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=sql_text("0"))
    first_delinquency_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notifications_sent: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=sql_text("0")
    )
    last_notification_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_suspended_for_delinquency: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sql_text("false")
    )
    suspension_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    suspension_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    resident: Mapped[Resident] = relationship(back_populates="delinquency")


class DeviceRegistration(Base):
    __tablename__ = "device_registrations"
    __table_args__ = (UniqueConstraint("user_ref", "device_id", name="uq_device_registrations_user_device"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_ref: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    device_id: Mapped[str] = mapped_column(String(256), nullable=False)
    push_token: Mapped[str | None] = mapped_column(String(512), nullable=True)
    platform: Mapped[str] = mapped_column(String(16), nullable=False)
    app_version: Mapped[str | None] = mapped_column(String(64), nullable=True)
    device_metadata: Mapped[dict | None] = mapped_column("metadata_json", JSON, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=sql_text("true"))
    last_activity: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    deliveries: Mapped[list[NotificationDelivery]] = relationship(back_populates="device")


class NotificationRecord(Base):
    """One logical notification attempt for one user.

    ``sent``, ``sent_at`` and ``delivery_error`` are written once by the
    dispatcher; ``read``/``read_at`` are inbox state owned by the user.
    """

    __tablename__ = "notification_records"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_ref: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=sql_text("false"))
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivery_error: Mapped[str | None] = mapped_column(String(255), nullable=True)
    action_required: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sql_text("false")
    )
    action_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=sql_text("false"))
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    deliveries: Mapped[list[NotificationDelivery]] = relationship(back_populates="notification")


class NotificationDelivery(Base):
    """Per-device outcome of a push fan-out, reconciled by delivery receipts."""

    __tablename__ = "notification_deliveries"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    notification_id: Mapped[UUID] = mapped_column(
        ForeignKey("notification_records.id", ondelete="CASCADE"), nullable=False, index=True
    )
    device_registration_id: Mapped[UUID] = mapped_column(
        ForeignKey("device_registrations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    provider_message_id: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=sql_text("1"))
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    notification: Mapped[NotificationRecord] = relationship(back_populates="deliveries")
    device: Mapped[DeviceRegistration] = relationship(back_populates="deliveries")


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"
    __table_args__ = (UniqueConstraint("user_ref", "category", name="uq_notification_preferences_user_category"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_ref: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    receive_push: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=sql_text("true")
    )


class Publication(Base):
    __tablename__ = "publications"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(
        String(32), nullable=False, default="bulletin", server_default=sql_text("'bulletin'")
    )
    scheduled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sql_text("false")
    )
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    notifications_sent: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sql_text("false")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    targets: Mapped[list[PublicationTarget]] = relationship(back_populates="publication")


class PublicationTarget(Base):
    __tablename__ = "publication_targets"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    publication_id: Mapped[UUID] = mapped_column(
        ForeignKey("publications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_type: Mapped[str] = mapped_column(String(16), nullable=False)
    street_id: Mapped[UUID | None] = mapped_column(nullable=True)
    address_id: Mapped[UUID | None] = mapped_column(nullable=True)

    publication: Mapped[Publication] = relationship(back_populates="targets")
