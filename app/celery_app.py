from celery import Celery
from celery.schedules import crontab

from app.core.config import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    SWEEP_HOUR,
    SWEEP_MINUTE,
    SWEEP_TIMEZONE,
)

celery_app = Celery(
    "course_access",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["app.tasks.access_tasks"],
)

celery_app.conf.update(
    timezone=SWEEP_TIMEZONE,
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "expire-accounts-daily": {
            "task": "expire_accounts_sweep",
            "schedule": crontab(hour=SWEEP_HOUR, minute=SWEEP_MINUTE),
        },
    },
)
