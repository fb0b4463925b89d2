"""
FieldStock Database Models

Tables for the stock-pickup lifecycle and inventory-reservation engine.

Tables:
  1. users                       - Read-only mirror of the user service (roles + hierarchy)
  2. device_stock                - Dealer-scoped, SKU-scoped available/overall counters
  3. pickup_records              - One reservation of stock by a marketer
  4. additional_pickup_requests  - Marketer requests for an extended pickup allowance
  5. notifications               - Persisted in-app notifications for lifecycle events
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


# Alias so Column(UUID(as_uuid=True)) calls read like the PostgreSQL type
def UUID(as_uuid=True):
    return GUID()


from db.session import Base

# ─── 1. Users (hierarchy mirror) ────────────────────────────────────────────


class User(Base):
    """Users as seen by the engine. Owned by the user service; never written here."""

    __tablename__ = "users"

    user_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    unique_id = Column(String(50), nullable=False, unique=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False)
    admin_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"))
    super_admin_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"))
    location = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_users_admin", "admin_id"),
        Index("ix_users_super_admin", "super_admin_id"),
        Index("ix_users_role", "role"),
        CheckConstraint(
            "role IN ('marketer', 'admin', 'super_admin', 'master_admin', 'dealer')",
            name="ck_user_role",
        ),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# ─── 2. Device Stock ────────────────────────────────────────────────────────


class DeviceStock(Base):
    """Authoritative available quantity per (dealer, device name, device model)."""

    __tablename__ = "device_stock"

    stock_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dealer_id = Column(UUID(as_uuid=True), nullable=False)
    device_name = Column(String(255), nullable=False)
    device_model = Column(String(255), nullable=False)
    available_quantity = Column(Integer, nullable=False, default=0)
    overall_quantity = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("dealer_id", "device_name", "device_model", name="uq_device_stock_sku"),
        CheckConstraint("available_quantity >= 0", name="ck_device_stock_available_non_negative"),
        CheckConstraint("available_quantity <= overall_quantity", name="ck_device_stock_available_ceiling"),
    )


# ─── 3. Pickup Records ──────────────────────────────────────────────────────


class PickupRecord(Base):
    __tablename__ = "pickup_records"

    pickup_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    marketer_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    admin_id = Column(UUID(as_uuid=True))  # supervisor at creation time
    dealer_id = Column(UUID(as_uuid=True), nullable=False)
    stock_id = Column(UUID(as_uuid=True), ForeignKey("device_stock.stock_id"), nullable=False)
    device_name = Column(String(255), nullable=False)
    device_model = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    pickup_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    deadline = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    location = Column(String(100))

    sold_at = Column(DateTime)
    returned_at = Column(DateTime)
    expired_at = Column(DateTime)
    transferred_at = Column(DateTime)
    transferred_to_marketer_id = Column(UUID(as_uuid=True))
    successor_pickup_id = Column(UUID(as_uuid=True))
    predecessor_pickup_id = Column(UUID(as_uuid=True))
    last_actor_id = Column(UUID(as_uuid=True))
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_pickups_status_deadline", "status", "deadline"),
        Index("ix_pickups_marketer_status", "marketer_id", "status"),
        Index("ix_pickups_stock", "stock_id"),
        Index("ix_pickups_pickup_date", "pickup_date"),
        CheckConstraint("quantity > 0", name="ck_pickup_quantity_positive"),
        CheckConstraint(
            "status IN ('pending', 'sold', 'expired', 'returned', 'transferred')",
            name="ck_pickup_status",
        ),
    )


# ─── 4. Additional Pickup Requests ──────────────────────────────────────────


class AdditionalPickupRequest(Base):
    __tablename__ = "additional_pickup_requests"

    request_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    marketer_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    reviewed_at = Column(DateTime)
    reviewer_id = Column(UUID(as_uuid=True))

    __table_args__ = (
        Index("ix_pickup_requests_marketer_status", "marketer_id", "status"),
        CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_pickup_request_status"),
    )


# ─── 5. Notifications ───────────────────────────────────────────────────────


class Notification(Base):
    __tablename__ = "notifications"

    notification_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    pickup_id = Column(UUID(as_uuid=True))
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_notifications_user_read", "user_id", "is_read"),)
