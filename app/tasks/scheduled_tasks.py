"""
VIPER Erasure Ledger - Background Tasks

Periodic sweeps over proofs, certificates and the audit log. Each sweep is
idempotent and safe to run alongside live traffic: state changes go through
the same conditional updates the API uses.

The functions can be run directly (TaskRunner, tests) or via Celery
(app.tasks.celery_tasks).
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.audit import (
    AuditActionType,
    AuditCategory,
    AuditResourceType,
    SYSTEM_ACTOR,
)
from app.models.base import utcnow
from app.services.audit_service import AuditEvent, AuditRecorder, AuditService, audit_recorder
from app.services.certificate_service import CertificateService
from app.services.proof_service import ProofService

logger = logging.getLogger(__name__)


# ===========================================
# SCHEDULED TASK: CERTIFICATE EXPIRY
# ===========================================

async def expire_certificates(
    db: AsyncSession,
    recorder: Optional[AuditRecorder] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Mark issued certificates past their validity end as expired.
    Should run hourly.
    """
    recorder = recorder or audit_recorder
    service = CertificateService(db, recorder)
    expired = await service.recompute_expiry(now)
    await recorder.drain()
    return {"expired": expired}


# ===========================================
# SCHEDULED TASK: PROOF EXPIRY
# ===========================================

async def expire_proofs(
    db: AsyncSession,
    recorder: Optional[AuditRecorder] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Move verified proofs past their expiration date to expired.
    Should run daily.
    """
    recorder = recorder or audit_recorder
    service = ProofService(db, recorder)
    expired = await service.expire_proofs(now)
    await recorder.drain()
    return {"expired": expired}


# ===========================================
# SCHEDULED TASK: AUDIT LOG ARCHIVAL
# ===========================================

async def archive_audit_logs(
    db: AsyncSession,
    recorder: Optional[AuditRecorder] = None,
    now: Optional[datetime] = None,
    days: Optional[int] = None,
) -> dict:
    """
    Archive audit entries older than `audit_archive_after_days`.
    Should run daily.
    """
    recorder = recorder or audit_recorder
    days = days if days is not None else settings.audit_archive_after_days
    now = now or utcnow()
    archived = await AuditService(db).archive_older_than(days, now=now)
    if archived:
        recorder.submit(AuditEvent(
            action=f"Archived {archived} audit entries older than {days} days",
            action_type=AuditActionType.AUDIT_ARCHIVED,
            actor=SYSTEM_ACTOR,
            resource_type=AuditResourceType.SYSTEM,
            category=AuditCategory.SYSTEM,
            is_system_action=True,
            metadata={"older_than_days": days, "archived": archived},
        ))
        await recorder.drain()
    return {"archived": archived, "older_than_days": days}


# ===========================================
# SCHEDULED TASK: RETENTION ANONYMIZATION
# ===========================================

async def anonymize_audit_logs(
    db: AsyncSession,
    recorder: Optional[AuditRecorder] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Anonymize audit entries whose retention date has passed.
    Should run weekly.
    """
    recorder = recorder or audit_recorder
    anonymized = await AuditService(db).anonymize_expired(now)
    if anonymized:
        recorder.submit(AuditEvent(
            action=f"Anonymized {anonymized} audit entries past retention",
            action_type=AuditActionType.AUDIT_ANONYMIZED,
            actor=SYSTEM_ACTOR,
            resource_type=AuditResourceType.SYSTEM,
            category=AuditCategory.SYSTEM,
            is_system_action=True,
            metadata={"anonymized": anonymized},
        ))
        await recorder.drain()
    return {"anonymized": anonymized}


# ===========================================
# TASK RUNNER (Development)
# ===========================================

class TaskRunner:
    """
    Simple task runner for development.
    In production, use Celery beat.
    """

    def __init__(self, db_session_factory, recorder: Optional[AuditRecorder] = None):
        self.db_session_factory = db_session_factory
        self.recorder = recorder or audit_recorder

    async def run_task(self, task_func, *args, **kwargs):
        """Run a single task with a new database session."""
        async with self.db_session_factory() as db:
            try:
                result = await task_func(db, self.recorder, *args, **kwargs)
                logger.info(f"Task {task_func.__name__} completed: {result}")
                return result
            except Exception as e:
                logger.error(f"Task {task_func.__name__} failed: {e}")
                raise

    async def run_scheduled_tasks(self, now: Optional[datetime] = None):
        """Run every sweep once (for development/testing)."""
        results = {}

        tasks = [
            ("expire_certificates", expire_certificates),
            ("expire_proofs", expire_proofs),
            ("archive_audit_logs", archive_audit_logs),
            ("anonymize_audit_logs", anonymize_audit_logs),
        ]

        for name, task_func in tasks:
            try:
                result = await self.run_task(task_func, now=now)
                results[name] = {"status": "success", "result": result}
            except Exception as e:
                results[name] = {"status": "error", "error": str(e)}

        return results
