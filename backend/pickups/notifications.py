"""Persisted in-app notifications written alongside pickup transitions."""

import uuid
from collections.abc import Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Notification, PickupRecord
from pickups.errors import NotFound
from pickups.hierarchy import HierarchyResolver, SupervisorChain


def _short(pickup_id: uuid.UUID) -> str:
    return str(pickup_id)[:8]


def add_notifications(
    db: AsyncSession,
    user_ids: Iterable[uuid.UUID | None],
    message: str,
    pickup_id: uuid.UUID | None = None,
) -> int:
    """Queue one notification per distinct user in the caller's transaction."""
    seen: set[uuid.UUID] = set()
    for user_id in user_ids:
        if user_id is None or user_id in seen:
            continue
        seen.add(user_id)
        db.add(Notification(user_id=user_id, pickup_id=pickup_id, message=message))
    return len(seen)


def notify_pickup_created(db: AsyncSession, record: PickupRecord, chain: SupervisorChain) -> int:
    message = (
        f"{chain.marketer_name or 'A marketer'} picked up {record.quantity} x "
        f"{record.device_name} {record.device_model} (pickup #{_short(record.pickup_id)})."
    )
    return add_notifications(db, [record.admin_id or chain.admin_id], message, record.pickup_id)


def notify_pickup_returned(db: AsyncSession, record: PickupRecord) -> int:
    message = f"Your stock pickup #{_short(record.pickup_id)} has been returned and restocked."
    return add_notifications(db, [record.marketer_id], message, record.pickup_id)


def notify_pickup_transferred(db: AsyncSession, original: PickupRecord, successor: PickupRecord) -> int:
    sent = add_notifications(
        db,
        [original.marketer_id],
        f"Your stock pickup #{_short(original.pickup_id)} was transferred to another marketer.",
        original.pickup_id,
    )
    sent += add_notifications(
        db,
        [successor.marketer_id],
        (
            f"A stock pickup of {successor.quantity} x {successor.device_name} {successor.device_model} "
            f"was transferred to you (pickup #{_short(successor.pickup_id)})."
        ),
        successor.pickup_id,
    )
    return sent


async def notify_pickup_expired(
    db: AsyncSession,
    record: PickupRecord,
    chain: SupervisorChain,
    hierarchy: HierarchyResolver,
    sla_hours: int,
) -> int:
    short = _short(record.pickup_id)
    sent = add_notifications(
        db,
        await hierarchy.master_admin_ids(),
        f"Stock pickup #{short} has expired ({sla_hours}h lapsed without sale, transfer or return).",
        record.pickup_id,
    )
    sent += add_notifications(
        db, [record.admin_id or chain.admin_id], f"Your marketer's stock pickup #{short} has expired.", record.pickup_id
    )
    sent += add_notifications(
        db, [chain.super_admin_id], f"A stock pickup in your chain (#{short}) has expired.", record.pickup_id
    )
    return sent


async def list_notifications(
    db: AsyncSession,
    user_id: uuid.UUID,
    unread_only: bool = False,
    limit: int = 50,
) -> list[Notification]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    query = query.order_by(Notification.created_at.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def mark_notification_read(db: AsyncSession, notification_id: uuid.UUID, user_id: uuid.UUID) -> None:
    result = await db.execute(
        update(Notification)
        .where(Notification.notification_id == notification_id, Notification.user_id == user_id)
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise NotFound("Notification not found", notification_id=notification_id)
    await db.commit()
