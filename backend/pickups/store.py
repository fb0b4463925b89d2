"""
Pickup Record Store — persistence and scoped queries for pickup records.

Status changes go through ``claim_transition``: a compare-and-set UPDATE
keyed on the pickup id *and* its expected current status. Two concurrent
transitions on the same record cannot both match, so the loser sees zero
rows instead of overwriting the winner.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import PickupRecord
from pickups.status import PickupStatus


@dataclass
class PickupFilters:
    status: PickupStatus | None = None
    dealer_id: uuid.UUID | None = None
    marketer_id: uuid.UUID | None = None
    device_name: str | None = None
    picked_up_from: datetime | None = None
    picked_up_to: datetime | None = None
    skip: int = 0
    limit: int = 50


async def get(db: AsyncSession, pickup_id: uuid.UUID) -> PickupRecord | None:
    result = await db.execute(
        select(PickupRecord).where(PickupRecord.pickup_id == pickup_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def insert(db: AsyncSession, record: PickupRecord) -> PickupRecord:
    db.add(record)
    await db.flush()
    return record


async def claim_transition(
    db: AsyncSession,
    pickup_id: uuid.UUID,
    *,
    expected: PickupStatus,
    target: PickupStatus,
    extra_conditions: tuple = (),
    **values: Any,
) -> bool:
    """Move the record from `expected` to `target`. Returns False if it was not in `expected`."""
    result = await db.execute(
        update(PickupRecord)
        .where(
            PickupRecord.pickup_id == pickup_id,
            PickupRecord.status == expected.value,
            *extra_conditions,
        )
        .values(status=target.value, updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def count_pending_for_marketer(db: AsyncSession, marketer_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(PickupRecord.pickup_id)).where(
            PickupRecord.marketer_id == marketer_id,
            PickupRecord.status == PickupStatus.PENDING.value,
        )
    )
    return int(result.scalar() or 0)


async def find_overdue_ids(
    db: AsyncSession,
    now: datetime,
    *,
    limit: int | None = None,
    marketer_ids: set[uuid.UUID] | None = None,
) -> list[uuid.UUID]:
    """Ids of pending records past their deadline, oldest deadline first."""
    query = select(PickupRecord.pickup_id).where(
        PickupRecord.status == PickupStatus.PENDING.value,
        PickupRecord.deadline < now,
    )
    if marketer_ids is not None:
        if not marketer_ids:
            return []
        query = query.where(PickupRecord.marketer_id.in_(marketer_ids))
    query = query.order_by(PickupRecord.deadline, PickupRecord.pickup_id)
    if limit:
        query = query.limit(limit)
    result = await db.execute(query)
    return [row.pickup_id for row in result.all()]


def _scoped(query, marketer_ids: set[uuid.UUID] | None):
    if marketer_ids is None:
        return query
    return query.where(PickupRecord.marketer_id.in_(marketer_ids))


async def list_scoped(
    db: AsyncSession,
    marketer_ids: set[uuid.UUID] | None,
    filters: PickupFilters | None = None,
) -> list[PickupRecord]:
    """Pickups for the given marketers (None = all), newest pickup first."""
    filters = filters or PickupFilters()
    if marketer_ids is not None and not marketer_ids:
        return []

    query = _scoped(select(PickupRecord), marketer_ids)
    if filters.status:
        query = query.where(PickupRecord.status == PickupStatus(filters.status).value)
    if filters.dealer_id:
        query = query.where(PickupRecord.dealer_id == filters.dealer_id)
    if filters.marketer_id:
        query = query.where(PickupRecord.marketer_id == filters.marketer_id)
    if filters.device_name:
        query = query.where(PickupRecord.device_name == filters.device_name)
    if filters.picked_up_from:
        query = query.where(PickupRecord.pickup_date >= filters.picked_up_from)
    if filters.picked_up_to:
        query = query.where(PickupRecord.pickup_date <= filters.picked_up_to)

    query = (
        query.order_by(PickupRecord.pickup_date.desc(), PickupRecord.pickup_id)
        .offset(filters.skip)
        .limit(filters.limit)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(query)
    return list(result.scalars().all())


async def count_by_status(db: AsyncSession, marketer_ids: set[uuid.UUID] | None) -> dict[str, int]:
    counts = {status.value: 0 for status in PickupStatus}
    if marketer_ids is not None and not marketer_ids:
        return counts
    query = _scoped(
        select(PickupRecord.status, func.count(PickupRecord.pickup_id).label("n")).group_by(PickupRecord.status),
        marketer_ids,
    )
    result = await db.execute(query)
    for row in result.all():
        counts[row.status] = int(row.n)
    return counts


async def delete(db: AsyncSession, record: PickupRecord) -> None:
    await db.delete(record)
    await db.flush()
