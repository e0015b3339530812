"""
VIPER Erasure Ledger - Audit Schemas

Pydantic schemas for audit-related request/response validation.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from app.models.audit import (
    AuditActionType,
    AuditCategory,
    AuditResourceType,
    AuditSeverity,
    AuditStatus,
)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class AuditLogResponse(BaseModel):
    id: UUID
    action: str
    action_type: AuditActionType
    actor: str
    target_user_id: Optional[str] = None
    is_system_action: bool
    resource_type: Optional[AuditResourceType] = None
    resource_id: Optional[str] = None
    device_id: Optional[str] = None
    status: AuditStatus
    severity: AuditSeverity
    category: AuditCategory
    details: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(
        None, validation_alias=AliasChoices("event_metadata", "metadata")
    )
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    location: Optional[Dict[str, Any]] = None
    created_at: datetime
    retention_date: datetime
    is_archived: bool
    archived_at: Optional[datetime] = None
    anonymized_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuditLogListResponse(BaseModel):
    items: List[AuditLogResponse]
    total: int
    skip: int
    limit: int


class DailyCount(BaseModel):
    date: str
    count: int


class AuditStatisticsResponse(BaseModel):
    """Aggregates over the statistics window; archived entries excluded unless asked."""
    window_days: int
    include_archived: bool
    total: int
    success: int
    warnings: int
    errors: int
    critical: int
    auth_events: int
    security_events: int
    by_status: Dict[str, int]
    by_severity: Dict[str, int]
    by_category: Dict[str, int]
    by_action_type: Dict[str, int]
    daily: List[DailyCount]


# =============================================================================
# RETENTION SCHEMAS
# =============================================================================

class ArchiveRequest(BaseModel):
    older_than_days: int = Field(..., ge=0)


class RetentionResult(BaseModel):
    affected: int
    ran_at: datetime
