"""
Expiry Sweeper — move every overdue pending pickup to expired.

Runs on the Celery beat schedule (every minute by default) and lazily before
list/get reads. Each record is expired in its own transaction through
``PickupLifecycleEngine.expire_pickup``, so a failure on one record never
holds back the rest of the batch, and a record that a concurrent sale,
return or transfer closed first is simply skipped.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pickups import store
from pickups.errors import InvalidTransition, NotFound, PickupError
from pickups.hierarchy import HierarchyResolver
from pickups.lifecycle import PickupLifecycleEngine
from realtime.publisher import PickupEventPublisher

logger = structlog.get_logger()


async def expire_overdue(
    engine: PickupLifecycleEngine,
    now: datetime | None = None,
    *,
    marketer_ids: set[uuid.UUID] | None = None,
    limit: int | None = None,
) -> dict:
    """Expire overdue pickups (optionally only for some marketers). Idempotent."""
    now = now or datetime.utcnow()
    db = engine.db
    overdue = await store.find_overdue_ids(db, now, limit=limit, marketer_ids=marketer_ids)

    expired = skipped = failed = 0
    for pickup_id in overdue:
        try:
            await engine.expire_pickup(pickup_id, now=now)
            expired += 1
        except (InvalidTransition, NotFound):
            # Closed or removed by someone else since the scan.
            skipped += 1
        except (SQLAlchemyError, PickupError) as exc:
            await db.rollback()
            failed += 1
            logger.error("sweep.record_failed", pickup_id=str(pickup_id), error=str(exc))

    return {"scanned": len(overdue), "expired": expired, "skipped": skipped, "failed": failed}


async def sweep_expired_pickups(
    db: AsyncSession,
    now: datetime | None = None,
    batch_size: int | None = None,
    *,
    hierarchy: HierarchyResolver | None = None,
    publisher: PickupEventPublisher | None = None,
) -> int:
    """Full sweep over every marketer. Returns the number of pickups expired."""
    now = now or datetime.utcnow()
    engine = PickupLifecycleEngine(db, hierarchy=hierarchy, publisher=publisher)
    summary = await expire_overdue(engine, now, limit=batch_size)
    logger.info("sweep.completed", swept_at=now.isoformat(), **summary)
    return summary["expired"]
