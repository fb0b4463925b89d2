"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "fieldstock",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.expiry.*": {"queue": "sweep"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # ── Stock Pickups ───────────────────────────────────────────
        "expire-stock-pickups-1m": {
            "task": "workers.expiry.sweep_expired_pickups",
            "schedule": crontab(minute=settings.expiry_sweep_cron_minute),
            "kwargs": {"batch_size": settings.expiry_sweep_batch_size},
            "options": {"queue": "sweep"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"], related_name="expiry")
