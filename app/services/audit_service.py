"""
VIPER Erasure Ledger - Audit Trail Service

Append-only audit logging with retention, archival and anonymization.

Writes go through AuditRecorder, which is best-effort: a failed audit write
is logged and pushed onto the recorder's failure channel, never raised into
the business operation that triggered it.
"""

import asyncio
import csv
import io
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy import select, func, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import async_session_factory
from app.models.base import utcnow, years_after
from app.models.audit import (
    AuditLog,
    AuditActionType,
    AuditStatus,
    AuditSeverity,
    AuditCategory,
    AuditResourceType,
    SYSTEM_ACTOR,
    ANONYMIZED_DETAILS,
    ANONYMIZED_USER_AGENT,
)
from app.utils.error_handling import ErrorCode, NotFoundException, ValidationException
from app.utils.signing import CanonicalEncoder

logger = logging.getLogger(__name__)


AUTH_ACTION_TYPES = (
    AuditActionType.AUTH_LOGIN,
    AuditActionType.AUTH_LOGOUT,
    AuditActionType.AUTH_FAILED,
    AuditActionType.AUTH_LOCKED,
)

EXPORT_COLUMNS = [
    "id", "created_at", "action", "action_type", "actor", "resource_type",
    "resource_id", "device_id", "status", "severity", "category",
    "is_system_action", "ip_address", "details", "is_archived",
]


def compute_retention_date(created_at: datetime, years: Optional[int] = None) -> datetime:
    """Retention is fixed once, at creation: created_at + N years."""
    return years_after(created_at, years if years is not None else settings.audit_retention_years)


@dataclass
class AuditEvent:
    """One audit fact, as handed to the recorder."""
    action: str
    action_type: AuditActionType
    actor: str = SYSTEM_ACTOR
    resource_type: Optional[AuditResourceType] = None
    resource_id: Optional[str] = None
    device_id: Optional[str] = None
    target_user_id: Optional[str] = None
    details: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: AuditStatus = AuditStatus.SUCCESS
    severity: AuditSeverity = AuditSeverity.LOW
    category: AuditCategory = AuditCategory.SYSTEM
    is_system_action: bool = False
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    duration_ms: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    # Stamped when the action happens, not when the write lands
    created_at: datetime = field(default_factory=utcnow)

    def to_model(self, retention_years: Optional[int] = None) -> AuditLog:
        created_at = self.created_at
        return AuditLog(
            id=uuid.uuid4(),
            action=self.action[:200],
            action_type=self.action_type,
            actor=self.actor,
            target_user_id=self.target_user_id,
            is_system_action=self.is_system_action,
            resource_type=self.resource_type,
            resource_id=self.resource_id,
            device_id=self.device_id,
            status=self.status,
            severity=self.severity,
            category=self.category,
            details=self.details[:1000] if self.details else None,
            # Round-trip through the canonical encoder so datetimes/UUIDs land as JSON
            event_metadata=json.loads(json.dumps(self.metadata or {}, cls=CanonicalEncoder)),
            user_agent=self.user_agent[:500] if self.user_agent else None,
            location={},
            ip_address=self.ip_address,
            session_id=self.session_id,
            duration_ms=self.duration_ms,
            error_code=self.error_code,
            error_message=self.error_message,
            tags=list(self.tags or []),
            created_at=created_at,
            retention_date=compute_retention_date(created_at, retention_years),
            is_archived=False,
        )


@dataclass
class AuditWriteFailure:
    """Entry on the recorder's failure channel."""
    event: AuditEvent
    error: str
    failed_at: datetime = field(default_factory=utcnow)


class AuditRecorder:
    """
    Non-blocking, non-throwing writer for audit entries.

    Each write uses its own session so an audit failure can never roll back
    (or be rolled back by) the business transaction that produced it.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        retention_years: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.retention_years = retention_years
        self.failures: List[AuditWriteFailure] = []
        self._pending: Set[asyncio.Task] = set()

    async def record(self, event: AuditEvent) -> Optional[AuditLog]:
        """Persist one entry. Returns None (and reports the failure) instead of raising."""
        try:
            async with self.session_factory() as session:
                entry = event.to_model(self.retention_years)
                session.add(entry)
                await session.commit()
                return entry
        except Exception as e:
            logger.error(
                f"Audit write failed for {event.action_type.value} "
                f"({event.resource_type.value if event.resource_type else 'none'}:{event.resource_id}): {e}"
            )
            self.failures.append(AuditWriteFailure(event=event, error=str(e)))
            return None

    def submit(self, event: AuditEvent) -> asyncio.Task:
        """Hand an entry to the background writer and return immediately."""
        task = asyncio.get_running_loop().create_task(self.record(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every submitted write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    @property
    def pending_count(self) -> int:
        return len(self._pending)


class AuditService:
    """Query, retention and reporting operations over the audit log."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ===========================================
    # QUERIES
    # ===========================================

    def _filtered(
        self,
        action_type: Optional[AuditActionType] = None,
        actor: Optional[str] = None,
        resource_type: Optional[AuditResourceType] = None,
        resource_id: Optional[str] = None,
        status: Optional[AuditStatus] = None,
        severity: Optional[AuditSeverity] = None,
        category: Optional[AuditCategory] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        include_archived: bool = False,
    ):
        query = select(AuditLog)
        if action_type:
            query = query.where(AuditLog.action_type == action_type)
        if actor:
            query = query.where(AuditLog.actor == actor)
        if resource_type:
            query = query.where(AuditLog.resource_type == resource_type)
        if resource_id:
            query = query.where(AuditLog.resource_id == resource_id)
        if status:
            query = query.where(AuditLog.status == status)
        if severity:
            query = query.where(AuditLog.severity == severity)
        if category:
            query = query.where(AuditLog.category == category)
        if start_date:
            query = query.where(AuditLog.created_at >= start_date)
        if end_date:
            query = query.where(AuditLog.created_at <= end_date)
        if not include_archived:
            query = query.where(AuditLog.is_archived.is_(False))
        return query

    async def get_logs(self, skip: int = 0, limit: int = 100, **filters) -> Tuple[List[AuditLog], int]:
        """
        Get audit logs with optional filtering.

        Returns:
            (page of entries newest first, total matching count)
        """
        query = self._filtered(**filters)
        total = await self.db.scalar(
            select(func.count()).select_from(query.subquery())
        ) or 0
        result = await self.db.execute(
            query.order_by(AuditLog.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_log(self, entry_id: uuid.UUID) -> AuditLog:
        entry = await self.db.get(AuditLog, entry_id)
        if entry is None:
            raise NotFoundException("AuditLog", entry_id, code=ErrorCode.AUDIT_ENTRY_NOT_FOUND)
        return entry

    async def get_resource_history(
        self,
        resource_type: AuditResourceType,
        resource_id: str,
    ) -> List[AuditLog]:
        """Chronological audit history of one proof or certificate."""
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.resource_type == resource_type)
            .where(AuditLog.resource_id == resource_id)
            .order_by(AuditLog.created_at.asc())
        )
        return list(result.scalars().all())

    # ===========================================
    # RETENTION
    # ===========================================

    async def archive_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        """
        Flag non-archived entries older than `days` as archived.

        Idempotent: a second run with the same cutoff matches nothing.

        Returns:
            Number of entries archived by this call
        """
        if days < 0:
            raise ValidationException("days must be zero or positive", field="days")
        now = now or utcnow()
        cutoff = now - timedelta(days=days)
        result = await self.db.execute(
            update(AuditLog)
            .where(AuditLog.created_at < cutoff)
            .where(AuditLog.is_archived.is_(False))
            .values(is_archived=True, archived_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        archived = result.rowcount or 0
        logger.info(f"Archived {archived} audit log entries older than {days} days")
        return archived

    async def anonymize(self, entry_id: uuid.UUID, now: Optional[datetime] = None) -> AuditLog:
        """
        Strip PII-bearing fields from an entry whose retention has passed.

        Raises:
            ValidationException: retention date not yet reached
        """
        now = now or utcnow()
        entry = await self.get_log(entry_id)
        if entry.should_retain(now):
            raise ValidationException(
                f"Audit entry {entry_id} is retained until {entry.retention_date.isoformat()}",
                code=ErrorCode.RETENTION_NOT_REACHED,
                details={"retention_date": entry.retention_date.isoformat()},
            )
        if entry.anonymized_at is not None:
            return entry

        entry.anonymized_at = now
        entry.event_metadata = {}
        entry.details = ANONYMIZED_DETAILS
        entry.user_agent = ANONYMIZED_USER_AGENT
        entry.location = {}
        await self.db.commit()
        return entry

    async def anonymize_expired(self, now: Optional[datetime] = None) -> int:
        """Anonymize every entry past its retention date that is not yet anonymized."""
        now = now or utcnow()
        result = await self.db.execute(
            update(AuditLog)
            .where(AuditLog.retention_date < now)
            .where(AuditLog.anonymized_at.is_(None))
            .values({
                AuditLog.anonymized_at: now,
                AuditLog.event_metadata: {},
                AuditLog.details: ANONYMIZED_DETAILS,
                AuditLog.user_agent: ANONYMIZED_USER_AGENT,
                AuditLog.location: {},
            })
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        count = result.rowcount or 0
        logger.info(f"Anonymized {count} audit log entries past retention")
        return count

    # ===========================================
    # REPORTING
    # ===========================================

    async def statistics(
        self,
        window_days: int = 30,
        include_archived: bool = False,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Aggregate counts over the last `window_days`.

        Archived entries are excluded unless include_archived is set.
        """
        now = now or utcnow()
        since = now - timedelta(days=window_days)

        conditions = [AuditLog.created_at >= since]
        if not include_archived:
            conditions.append(AuditLog.is_archived.is_(False))

        async def grouped(column) -> Dict[str, int]:
            rows = await self.db.execute(
                select(column, func.count(AuditLog.id).label("count"))
                .where(*conditions)
                .group_by(column)
            )
            return {
                (row[0].value if hasattr(row[0], "value") else str(row[0])): row.count
                for row in rows
            }

        by_status = await grouped(AuditLog.status)
        by_severity = await grouped(AuditLog.severity)
        by_category = await grouped(AuditLog.category)
        by_action_type = await grouped(AuditLog.action_type)

        daily_rows = await self.db.execute(
            select(func.date(AuditLog.created_at).label("day"), func.count(AuditLog.id).label("count"))
            .where(*conditions)
            .group_by(func.date(AuditLog.created_at))
            .order_by(func.date(AuditLog.created_at))
        )
        daily = [{"date": str(row.day), "count": row.count} for row in daily_rows]

        total = sum(by_status.values())
        auth_events = sum(by_action_type.get(t.value, 0) for t in AUTH_ACTION_TYPES)

        return {
            "window_days": window_days,
            "generated_at": now.isoformat(),
            "include_archived": include_archived,
            "total": total,
            "success": by_status.get(AuditStatus.SUCCESS.value, 0),
            "warnings": by_status.get(AuditStatus.WARNING.value, 0),
            "errors": by_status.get(AuditStatus.ERROR.value, 0),
            "critical": by_severity.get(AuditSeverity.CRITICAL.value, 0),
            "auth_events": auth_events,
            "security_events": by_category.get(AuditCategory.SECURITY.value, 0),
            "by_status": by_status,
            "by_severity": by_severity,
            "by_category": by_category,
            "by_action_type": by_action_type,
            "daily": daily,
        }

    async def security_events(self, days: int = 7, limit: int = 50, now: Optional[datetime] = None) -> List[AuditLog]:
        """Recent security-category or high/critical severity entries."""
        now = now or utcnow()
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.created_at >= now - timedelta(days=days))
            .where(
                or_(
                    AuditLog.category == AuditCategory.SECURITY,
                    AuditLog.severity.in_([AuditSeverity.HIGH, AuditSeverity.CRITICAL]),
                )
            )
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def export_logs(self, export_format: str = "json", limit: int = 10000, **filters) -> Tuple[str, str]:
        """
        Export matching entries.

        Returns:
            (content, media type)
        """
        if export_format not in ("json", "csv"):
            raise ValidationException(f"Unsupported export format: {export_format}", field="format")

        logs, _ = await self.get_logs(skip=0, limit=limit, **filters)
        records = [audit_log_to_dict(log) for log in logs]

        if export_format == "json":
            return json.dumps(records, cls=CanonicalEncoder, indent=2), "application/json"

        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        for record in records:
            writer.writerow({key: record.get(key) for key in EXPORT_COLUMNS})
        return output.getvalue(), "text/csv"


def audit_log_to_dict(log: AuditLog) -> Dict[str, Any]:
    return {
        "id": str(log.id),
        "created_at": log.created_at.isoformat(),
        "action": log.action,
        "action_type": log.action_type.value,
        "actor": log.actor,
        "target_user_id": log.target_user_id,
        "resource_type": log.resource_type.value if log.resource_type else None,
        "resource_id": log.resource_id,
        "device_id": log.device_id,
        "status": log.status.value,
        "severity": log.severity.value,
        "category": log.category.value,
        "is_system_action": log.is_system_action,
        "ip_address": log.ip_address,
        "user_agent": log.user_agent,
        "details": log.details,
        "metadata": log.event_metadata,
        "retention_date": log.retention_date.isoformat(),
        "is_archived": log.is_archived,
        "archived_at": log.archived_at.isoformat() if log.archived_at else None,
        "anonymized_at": log.anonymized_at.isoformat() if log.anonymized_at else None,
    }


# Process-wide recorder bound to the application session factory
audit_recorder = AuditRecorder(async_session_factory)
