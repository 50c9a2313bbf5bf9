"""Initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16

"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "addresses",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("street_id", sa.Uuid(), nullable=False),
        sa.Column("label", sa.String(length=256), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_addresses_street_id", "addresses", ["street_id"])

    op.create_table(
        "residents",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_ref", sa.String(length=128), nullable=True),
        sa.Column("address_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.String(length=32), server_default=sa.text("'active'"), nullable=False),
        sa.ForeignKeyConstraint(["address_id"], ["addresses.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_residents_user_ref", "residents", ["user_ref"])

    op.create_table(
        "delinquency_aggregates",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("resident_id", sa.Uuid(), nullable=False),
        sa.Column("amount_owed", sa.Numeric(precision=12, scale=2), server_default=sa.text("0"), nullable=False),
        sa.Column("is_delinquent", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("days_in_arrears", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("first_delinquency_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notifications_sent", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_notification_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_suspended_for_delinquency", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("suspension_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("suspension_reason", sa.String(length=200), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["resident_id"], ["residents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("resident_id"),
    )
    op.create_index(
        "ix_delinquency_aggregates_sweep",
        "delinquency_aggregates",
        ["is_delinquent", "is_suspended_for_delinquency", "days_in_arrears"],
    )

    op.create_table(
        "device_registrations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_ref", sa.String(length=128), nullable=False),
        sa.Column("device_id", sa.String(length=256), nullable=False),
        sa.Column("push_token", sa.String(length=512), nullable=True),
        sa.Column("platform", sa.String(length=16), nullable=False),
        sa.Column("app_version", sa.String(length=64), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_ref", "device_id", name="uq_device_registrations_user_device"),
    )
    op.create_index("ix_device_registrations_user_ref", "device_registrations", ["user_ref"])

    op.create_table(
        "notification_records",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_ref", sa.String(length=128), nullable=False),
        sa.Column("channel", sa.String(length=16), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("sent", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_error", sa.String(length=255), nullable=True),
        sa.Column("action_required", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("action_type", sa.String(length=64), nullable=True),
        sa.Column("action_payload", sa.JSON(), nullable=True),
        sa.Column("read", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_records_user_ref", "notification_records", ["user_ref"])

    op.create_table(
        "notification_deliveries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("notification_id", sa.Uuid(), nullable=False),
        sa.Column("device_registration_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("provider_message_id", sa.String(length=256), nullable=True),
        sa.Column("attempts", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.String(length=255), nullable=True),
        sa.Column("provider_metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["notification_id"], ["notification_records.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["device_registration_id"], ["device_registrations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_deliveries_notification_id", "notification_deliveries", ["notification_id"])
    op.create_index(
        "ix_notification_deliveries_device_registration_id", "notification_deliveries", ["device_registration_id"]
    )
    op.create_index(
        "ix_notification_deliveries_provider_message_id", "notification_deliveries", ["provider_message_id"]
    )

    op.create_table(
        "notification_preferences",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_ref", sa.String(length=128), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("receive_push", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_ref", "category", name="uq_notification_preferences_user_category"),
    )

    op.create_table(
        "publications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("kind", sa.String(length=32), server_default=sa.text("'bulletin'"), nullable=False),
        sa.Column("scheduled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notifications_sent", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_publications_scheduled_at", "publications", ["scheduled_at"])

    op.create_table(
        "publication_targets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("publication_id", sa.Uuid(), nullable=False),
        sa.Column("target_type", sa.String(length=16), nullable=False),
        sa.Column("street_id", sa.Uuid(), nullable=True),
        sa.Column("address_id", sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(["publication_id"], ["publications.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_publication_targets_publication_id", "publication_targets", ["publication_id"])


def downgrade() -> None:
    op.drop_index("ix_publication_targets_publication_id", table_name="publication_targets")
    op.drop_index("ix_publications_scheduled_at", table_name="publications")
    op.drop_index("ix_notification_deliveries_provider_message_id", table_name="notification_deliveries")
    op.drop_index("ix_notification_deliveries_device_registration_id", table_name="notification_deliveries")
    op.drop_index("ix_notification_deliveries_notification_id", table_name="notification_deliveries")
    op.drop_index("ix_notification_records_user_ref", table_name="notification_records")
    op.drop_index("ix_device_registrations_user_ref", table_name="device_registrations")
    op.drop_index("ix_delinquency_aggregates_sweep", table_name="delinquency_aggregates")
    op.drop_index("ix_residents_user_ref", table_name="residents")
    op.drop_index("ix_addresses_street_id", table_name="addresses")

    op.drop_table("publication_targets")
    op.drop_table("publications")
    op.drop_table("notification_preferences")
    op.drop_table("notification_deliveries")
    op.drop_table("notification_records")
    op.drop_table("device_registrations")
    op.drop_table("delinquency_aggregates")
    op.drop_table("residents")
    op.drop_table("addresses")
