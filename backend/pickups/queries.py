"""
Hierarchy-scoped reads over pickup records.

Every read resolves the viewer's visible marketers first and filters on
them, so a viewer never sees another chain's pickups. Overdue pickups in
scope are expired before the read when lazy expiry is on, so callers never
see a stale ``pending`` past its deadline.
"""

import uuid
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import PickupRecord
from pickups import store
from pickups.errors import NotFound
from pickups.hierarchy import HierarchyResolver, Role
from pickups.lifecycle import PickupLifecycleEngine
from pickups.store import PickupFilters
from pickups.sweeper import expire_overdue
from realtime.publisher import PickupEventPublisher


async def _expire_in_scope(
    db: AsyncSession,
    hierarchy: HierarchyResolver,
    publisher: PickupEventPublisher | None,
    marketer_ids: set[uuid.UUID] | None,
    now: datetime,
) -> None:
    if not get_settings().lazy_expiry_on_read:
        return
    engine = PickupLifecycleEngine(db, hierarchy=hierarchy, publisher=publisher)
    await expire_overdue(engine, now, marketer_ids=marketer_ids)


async def list_pickups(
    db: AsyncSession,
    hierarchy: HierarchyResolver,
    viewer_id: uuid.UUID,
    role: Role | str,
    filters: PickupFilters | None = None,
    *,
    publisher: PickupEventPublisher | None = None,
    now: datetime | None = None,
) -> list[PickupRecord]:
    now = now or datetime.utcnow()
    visible = await hierarchy.resolve_visible_marketers(viewer_id, role)
    await _expire_in_scope(db, hierarchy, publisher, visible, now)
    return await store.list_scoped(db, visible, filters)


async def get_pickup(
    db: AsyncSession,
    hierarchy: HierarchyResolver,
    viewer_id: uuid.UUID,
    role: Role | str,
    pickup_id: uuid.UUID,
    *,
    publisher: PickupEventPublisher | None = None,
    now: datetime | None = None,
) -> PickupRecord:
    """One pickup, if visible. Invisible records are reported as missing."""
    now = now or datetime.utcnow()
    visible = await hierarchy.resolve_visible_marketers(viewer_id, role)
    record = await store.get(db, pickup_id)
    if record is None or (visible is not None and record.marketer_id not in visible):
        raise NotFound("Stock pickup not found", pickup_id=pickup_id)

    if record.status == "pending" and record.deadline < now and get_settings().lazy_expiry_on_read:
        await _expire_in_scope(db, hierarchy, publisher, {record.marketer_id}, now)
        record = await store.get(db, pickup_id)
    return record


async def summarize_pickups(
    db: AsyncSession,
    hierarchy: HierarchyResolver,
    viewer_id: uuid.UUID,
    role: Role | str,
    *,
    publisher: PickupEventPublisher | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Per-status counts for the viewer's scope, plus a total."""
    now = now or datetime.utcnow()
    visible = await hierarchy.resolve_visible_marketers(viewer_id, role)
    await _expire_in_scope(db, hierarchy, publisher, visible, now)
    counts = await store.count_by_status(db, visible)
    counts["total"] = sum(counts.values())
    return counts
