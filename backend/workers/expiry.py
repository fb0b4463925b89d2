"""
Expiry Worker — force overdue stock pickups into ``expired``.

Runs every minute (see celery_app.py beat_schedule). Each overdue record is
expired in its own transaction and its marketer's admin, super-admin and
every master-admin are notified. Re-running is a no-op for records that are
already closed.
"""

import asyncio
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


def build_publisher(redis_url: str):
    from realtime.publisher import RedisPickupEventPublisher

    return RedisPickupEventPublisher(redis_url)


@celery_app.task(
    name="workers.expiry.sweep_expired_pickups",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
)
def sweep_expired_pickups(self, batch_size: int | None = None):
    """Scheduled sweep: expire every pending pickup whose deadline has passed."""
    run_id = self.request.id or "manual"
    logger.info("sweep.started", run_id=run_id)

    async def _sweep():
        from core.config import get_settings
        from pickups.sweeper import sweep_expired_pickups as sweep

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            started_at = datetime.utcnow()

            async with async_session() as db:
                expired = await sweep(
                    db,
                    started_at,
                    batch_size or settings.expiry_sweep_batch_size,
                    publisher=build_publisher(settings.redis_url),
                )

            return {
                "status": "success",
                "run_id": run_id,
                "expired_count": expired,
                "completed_at": datetime.utcnow().isoformat(),
            }
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_sweep())
    except Exception as exc:
        logger.error("sweep.failed", run_id=run_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
