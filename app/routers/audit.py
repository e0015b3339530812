"""
VIPER Erasure Ledger - Audit Trail Router

API endpoints for audit logs, retention and compliance reporting.
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import (
    Principal,
    RequestOrigin,
    get_audit_recorder,
    get_request_origin,
    require_permission,
)
from app.models.audit import (
    AuditActionType,
    AuditCategory,
    AuditResourceType,
    AuditSeverity,
    AuditStatus,
)
from app.models.base import utcnow
from app.schemas.audit import (
    ArchiveRequest,
    AuditLogListResponse,
    AuditLogResponse,
    AuditStatisticsResponse,
    RetentionResult,
)
from app.services.audit_service import AuditEvent, AuditRecorder, AuditService
from app.utils.permissions import Permission

router = APIRouter(prefix="/audit", tags=["Audit Trail"])


@router.get("/logs", response_model=AuditLogListResponse)
async def get_audit_logs(
    action_type: Optional[AuditActionType] = Query(None, description="Filter by action type"),
    actor: Optional[str] = Query(None, description="Filter by actor"),
    resource_type: Optional[AuditResourceType] = Query(None),
    resource_id: Optional[str] = Query(None),
    status: Optional[AuditStatus] = Query(None),
    severity: Optional[AuditSeverity] = Query(None),
    category: Optional[AuditCategory] = Query(None),
    start_date: Optional[datetime] = Query(None, description="Filter from date"),
    end_date: Optional[datetime] = Query(None, description="Filter to date"),
    include_archived: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission([Permission.VIEW_AUDIT_LOGS])),
):
    """
    Get audit logs with optional filtering.

    Archived entries are hidden unless `include_archived` is set.
    """
    service = AuditService(db)
    items, total = await service.get_logs(
        skip=skip,
        limit=limit,
        action_type=action_type,
        actor=actor,
        resource_type=resource_type,
        resource_id=resource_id,
        status=status,
        severity=severity,
        category=category,
        start_date=start_date,
        end_date=end_date,
        include_archived=include_archived,
    )
    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(log) for log in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/logs/{entry_id}", response_model=AuditLogResponse)
async def get_audit_log(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission([Permission.VIEW_AUDIT_LOGS])),
):
    service = AuditService(db)
    return AuditLogResponse.model_validate(await service.get_log(entry_id))


@router.get("/history/{resource_type}/{resource_id}", response_model=list[AuditLogResponse])
async def get_resource_history(
    resource_type: AuditResourceType,
    resource_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission([Permission.VIEW_AUDIT_LOGS])),
):
    """Chronological history of one proof or certificate."""
    service = AuditService(db)
    history = await service.get_resource_history(resource_type, resource_id)
    return [AuditLogResponse.model_validate(log) for log in history]


@router.get("/statistics", response_model=AuditStatisticsResponse)
async def get_audit_statistics(
    window_days: int = Query(30, ge=1, le=3650),
    include_archived: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission([Permission.VIEW_AUDIT_LOGS])),
):
    """
    Aggregate counts by status, severity, category and action type.

    Shows:
    - Totals and error/warning counts
    - Authentication and security event counts
    - Daily trend over the window
    """
    service = AuditService(db)
    return await service.statistics(window_days=window_days, include_archived=include_archived)


@router.get("/security-events", response_model=list[AuditLogResponse])
async def get_security_events(
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission([Permission.VIEW_AUDIT_LOGS])),
):
    """Recent security-category and high/critical severity entries."""
    service = AuditService(db)
    events = await service.security_events(days=days, limit=limit)
    return [AuditLogResponse.model_validate(log) for log in events]


@router.get("/export")
async def export_audit_logs(
    export_format: str = Query("json", alias="format", pattern="^(json|csv)$"),
    action_type: Optional[AuditActionType] = Query(None),
    category: Optional[AuditCategory] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    include_archived: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission([Permission.EXPORT_AUDIT_LOGS])),
    origin: RequestOrigin = Depends(get_request_origin),
    recorder: AuditRecorder = Depends(get_audit_recorder),
):
    """Export matching entries as JSON or CSV. The export itself is audited."""
    service = AuditService(db)
    content, media_type = await service.export_logs(
        export_format,
        action_type=action_type,
        category=category,
        start_date=start_date,
        end_date=end_date,
        include_archived=include_archived,
    )
    recorder.submit(AuditEvent(
        action=f"Exported audit logs as {export_format}",
        action_type=AuditActionType.DATA_EXPORT,
        actor=principal.id,
        resource_type=AuditResourceType.SYSTEM,
        category=AuditCategory.DATA_ACCESS,
        severity=AuditSeverity.MEDIUM,
        ip_address=origin.ip_address,
        user_agent=origin.user_agent,
        metadata={"format": export_format},
    ))
    filename = f"audit_logs_{utcnow():%Y%m%d_%H%M%S}.{export_format}"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/archive", response_model=RetentionResult)
async def archive_audit_logs(
    data: ArchiveRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission([Permission.MANAGE_AUDIT_RETENTION])),
    origin: RequestOrigin = Depends(get_request_origin),
    recorder: AuditRecorder = Depends(get_audit_recorder),
):
    """Archive non-archived entries older than `older_than_days`. Safe to repeat."""
    service = AuditService(db)
    now = utcnow()
    archived = await service.archive_older_than(data.older_than_days, now=now)
    recorder.submit(AuditEvent(
        action=f"Archived {archived} audit entries older than {data.older_than_days} days",
        action_type=AuditActionType.AUDIT_ARCHIVED,
        actor=principal.id,
        resource_type=AuditResourceType.SYSTEM,
        category=AuditCategory.SYSTEM,
        ip_address=origin.ip_address,
        metadata={"older_than_days": data.older_than_days, "archived": archived},
    ))
    return RetentionResult(affected=archived, ran_at=now)


@router.post("/logs/{entry_id}/anonymize", response_model=AuditLogResponse)
async def anonymize_audit_log(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission([Permission.MANAGE_AUDIT_RETENTION])),
    origin: RequestOrigin = Depends(get_request_origin),
    recorder: AuditRecorder = Depends(get_audit_recorder),
):
    """Strip PII from an entry past its retention date."""
    service = AuditService(db)
    entry = await service.anonymize(entry_id)
    recorder.submit(AuditEvent(
        action=f"Anonymized audit entry {entry_id}",
        action_type=AuditActionType.AUDIT_ANONYMIZED,
        actor=principal.id,
        resource_type=AuditResourceType.SYSTEM,
        resource_id=str(entry_id),
        category=AuditCategory.DATA_MODIFICATION,
        ip_address=origin.ip_address,
    ))
    return AuditLogResponse.model_validate(entry)


@router.get("/action-types")
async def list_audit_action_types():
    """List all audit action types."""
    return {"action_types": [t.value for t in AuditActionType]}
