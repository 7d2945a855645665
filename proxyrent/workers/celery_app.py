# proxyrent/workers/celery_app.py
from celery import Celery
from celery.schedules import crontab

from proxyrent.core.config import settings

celery_app = Celery(
    "proxyrent",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["proxyrent.workers.maintenance"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

celery_app.conf.beat_schedule = {
    "expire-allocations": {
        "task": "expire_allocations",
        "schedule": float(settings.EXPIRY_SWEEP_INTERVAL_SECONDS),
    },
    "finalize-cancellations": {
        "task": "finalize_cancellations",
        "schedule": float(settings.EXPIRY_SWEEP_INTERVAL_SECONDS),
    },
    "renew-subscriptions": {
        "task": "renew_subscriptions",
        "schedule": float(settings.RENEWAL_SWEEP_INTERVAL_SECONDS),
    },
    "proxy-health-check": {
        "task": "check_proxy_health",
        "schedule": float(settings.HEALTH_CHECK_INTERVAL_SECONDS),
    },
    # Daily at 3 AM
    "usage-retention": {
        "task": "enforce_usage_retention",
        "schedule": crontab(hour=3, minute=0),
    },
    "archive-invoices": {
        "task": "archive_invoices",
        "schedule": crontab(hour=3, minute=30),
    },
}
