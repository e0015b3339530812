"""
VIPER Erasure Ledger - Celery Configuration

Celery configuration for the periodic sweeps.
Uses Redis as the message broker and result backend.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings


# Create Celery app
celery_app = Celery(
    'viper_ledger',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['app.tasks.celery_tasks'],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,  # 4 minutes (warning before hard limit)

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Result backend settings
    result_expires=86400,  # 24 hours

    # Retry settings
    task_default_retry_delay=60,  # 1 minute
    task_max_retries=3,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Expire certificates every hour
        'expire-certificates': {
            'task': 'app.tasks.celery_tasks.expire_certificates_task',
            'schedule': crontab(minute=0),
        },

        # Expire proofs every day at 1 AM
        'expire-proofs': {
            'task': 'app.tasks.celery_tasks.expire_proofs_task',
            'schedule': crontab(hour=1, minute=0),
        },

        # Archive old audit logs every day at 3 AM
        'archive-audit-logs': {
            'task': 'app.tasks.celery_tasks.archive_audit_logs_task',
            'schedule': crontab(hour=3, minute=0),
        },

        # Anonymize audit logs past retention, Sunday 4 AM
        'anonymize-audit-logs': {
            'task': 'app.tasks.celery_tasks.anonymize_audit_logs_task',
            'schedule': crontab(day_of_week=0, hour=4, minute=0),
        },
    },
)


celery_app.conf.task_routes = {
    'app.tasks.celery_tasks.*': {'queue': 'default'},
}
