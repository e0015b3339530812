"""
VIPER Erasure Ledger - Celery Tasks

Celery entry points for the periodic sweeps in app.tasks.scheduled_tasks.
"""

import asyncio
import logging
from typing import Any, Dict

from celery import shared_task

from app.database import async_session_factory, engine
from app.tasks import scheduled_tasks

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _run_sweep(task_func) -> Dict[str, Any]:
    """Run one sweep in a fresh session, then release pooled connections bound to this loop."""
    try:
        async with async_session_factory() as db:
            return await task_func(db)
    finally:
        await engine.dispose()


# ===========================================
# LIFECYCLE SWEEPS
# ===========================================

@shared_task(name='app.tasks.celery_tasks.expire_certificates_task')
def expire_certificates_task() -> Dict[str, Any]:
    """Expire issued certificates past their validity end."""
    return run_async(_run_sweep(scheduled_tasks.expire_certificates))


@shared_task(name='app.tasks.celery_tasks.expire_proofs_task')
def expire_proofs_task() -> Dict[str, Any]:
    """Expire verified proofs past their expiration date."""
    return run_async(_run_sweep(scheduled_tasks.expire_proofs))


# ===========================================
# AUDIT RETENTION SWEEPS
# ===========================================

@shared_task(name='app.tasks.celery_tasks.archive_audit_logs_task')
def archive_audit_logs_task() -> Dict[str, Any]:
    """Archive old audit logs."""
    return run_async(_run_sweep(scheduled_tasks.archive_audit_logs))


@shared_task(name='app.tasks.celery_tasks.anonymize_audit_logs_task')
def anonymize_audit_logs_task() -> Dict[str, Any]:
    """Anonymize audit logs past their retention date."""
    return run_async(_run_sweep(scheduled_tasks.anonymize_audit_logs))
