"""
Initial schema - users mirror, device stock, pickups, allowance requests, notifications

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Users (mirror of the user service)
    op.create_table(
        "users",
        sa.Column("user_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("unique_id", sa.String(50), nullable=False, unique=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("admin_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id")),
        sa.Column("super_admin_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id")),
        sa.Column("location", sa.String(100)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "role IN ('marketer', 'admin', 'super_admin', 'master_admin', 'dealer')",
            name="ck_user_role",
        ),
    )
    op.create_index("ix_users_admin", "users", ["admin_id"])
    op.create_index("ix_users_super_admin", "users", ["super_admin_id"])
    op.create_index("ix_users_role", "users", ["role"])

    # 2. Device stock
    op.create_table(
        "device_stock",
        sa.Column("stock_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("dealer_id", UUID(as_uuid=True), nullable=False),
        sa.Column("device_name", sa.String(255), nullable=False),
        sa.Column("device_model", sa.String(255), nullable=False),
        sa.Column("available_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("overall_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("dealer_id", "device_name", "device_model", name="uq_device_stock_sku"),
        sa.CheckConstraint("available_quantity >= 0", name="ck_device_stock_available_non_negative"),
        sa.CheckConstraint("available_quantity <= overall_quantity", name="ck_device_stock_available_ceiling"),
    )

    # 3. Pickup records
    op.create_table(
        "pickup_records",
        sa.Column("pickup_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("marketer_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("admin_id", UUID(as_uuid=True)),
        sa.Column("dealer_id", UUID(as_uuid=True), nullable=False),
        sa.Column("stock_id", UUID(as_uuid=True), sa.ForeignKey("device_stock.stock_id"), nullable=False),
        sa.Column("device_name", sa.String(255), nullable=False),
        sa.Column("device_model", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("pickup_date", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("deadline", sa.DateTime, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("location", sa.String(100)),
        sa.Column("sold_at", sa.DateTime),
        sa.Column("returned_at", sa.DateTime),
        sa.Column("expired_at", sa.DateTime),
        sa.Column("transferred_at", sa.DateTime),
        sa.Column("transferred_to_marketer_id", UUID(as_uuid=True)),
        sa.Column("successor_pickup_id", UUID(as_uuid=True)),
        sa.Column("predecessor_pickup_id", UUID(as_uuid=True)),
        sa.Column("last_actor_id", UUID(as_uuid=True)),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="ck_pickup_quantity_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'sold', 'expired', 'returned', 'transferred')",
            name="ck_pickup_status",
        ),
    )
    op.create_index("ix_pickups_status_deadline", "pickup_records", ["status", "deadline"])
    op.create_index("ix_pickups_marketer_status", "pickup_records", ["marketer_id", "status"])
    op.create_index("ix_pickups_stock", "pickup_records", ["stock_id"])
    op.create_index("ix_pickups_pickup_date", "pickup_records", ["pickup_date"])

    # 4. Additional pickup requests
    op.create_table(
        "additional_pickup_requests",
        sa.Column("request_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("marketer_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("reviewed_at", sa.DateTime),
        sa.Column("reviewer_id", UUID(as_uuid=True)),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_pickup_request_status"),
    )
    op.create_index(
        "ix_pickup_requests_marketer_status", "additional_pickup_requests", ["marketer_id", "status"]
    )

    # 5. Notifications
    op.create_table(
        "notifications",
        sa.Column(
            "notification_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("pickup_id", UUID(as_uuid=True)),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "is_read"])


def downgrade() -> None:
    tables = [
        "notifications",
        "additional_pickup_requests",
        "pickup_records",
        "device_stock",
        "users",
    ]
    for table in tables:
        op.drop_table(table)
