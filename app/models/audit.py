"""
VIPER Erasure Ledger - Audit Log Model

Immutable audit log for every lifecycle action in the system.

Retention Features:
- retention_date fixed at creation (created_at + 7 years by default)
- Archival flag for operational log-volume control
- Anonymization of PII-bearing fields once retention has passed
- Mapper listeners reject any other change and any early delete
"""

import uuid
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, Integer, String, Text, Uuid, event, inspect
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.base import utcnow
from app.utils.error_handling import BusinessRuleException, ErrorCode


class AuditActionType(str, enum.Enum):
    """Audit action types."""
    AUTH_LOGIN = "auth_login"
    AUTH_LOGOUT = "auth_logout"
    AUTH_FAILED = "auth_failed"
    AUTH_LOCKED = "auth_locked"
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    PROOF_UPLOADED = "proof_uploaded"
    PROOF_UPDATED = "proof_updated"
    PROOF_STATUS_CHANGED = "proof_status_changed"
    PROOF_VERIFIED = "proof_verified"
    PROOF_FAILED = "proof_failed"
    PROOF_EXPIRED = "proof_expired"
    PROOF_DELETED = "proof_deleted"
    CERTIFICATE_GENERATED = "certificate_generated"
    CERTIFICATE_UPDATED = "certificate_updated"
    CERTIFICATE_ISSUED = "certificate_issued"
    CERTIFICATE_REVOKED = "certificate_revoked"
    CERTIFICATE_EXPIRED = "certificate_expired"
    CERTIFICATE_DOWNLOADED = "certificate_downloaded"
    CERTIFICATE_VERIFIED = "certificate_verified"
    SETTINGS_CHANGED = "settings_changed"
    REPORT_GENERATED = "report_generated"
    SYSTEM_BACKUP = "system_backup"
    SYSTEM_RESTORE = "system_restore"
    DATA_ACCESS = "data_access"
    DATA_EXPORT = "data_export"
    DATA_IMPORT = "data_import"
    AUDIT_ARCHIVED = "audit_archived"
    AUDIT_ANONYMIZED = "audit_anonymized"
    WIPE_STARTED = "wipe_started"
    WIPE_COMPLETED = "wipe_completed"
    WIPE_FAILED = "wipe_failed"
    DEVICE_REGISTERED = "device_registered"
    DEVICE_DECOMMISSIONED = "device_decommissioned"


class AuditStatus(str, enum.Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"


class AuditSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditCategory(str, enum.Enum):
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    DATA_ACCESS = "data_access"
    DATA_MODIFICATION = "data_modification"
    SYSTEM = "system"
    SECURITY = "security"


class AuditResourceType(str, enum.Enum):
    USER = "user"
    PROOF = "proof"
    CERTIFICATE = "certificate"
    DEVICE = "device"
    SYSTEM = "system"
    REPORT = "report"


SYSTEM_ACTOR = "system"
ANONYMIZED_DETAILS = "Anonymized due to retention policy"
ANONYMIZED_USER_AGENT = "Anonymized"

# The only columns allowed to change after insert
ARCHIVAL_FIELDS = frozenset({"is_archived", "archived_at"})
ANONYMIZATION_FIELDS = frozenset({"event_metadata", "details", "user_agent", "location", "anonymized_at"})


class AuditLog(Base):
    """
    Immutable audit log entry.

    Semantic fields (action, actor, timestamps, status...) never change
    after insert. Only the archival flag and, once retention has passed,
    the PII-bearing fields may be rewritten.
    """

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Action
    action: Mapped[str] = mapped_column(String(200), nullable=False)
    action_type: Mapped[AuditActionType] = mapped_column(
        Enum(AuditActionType),
        nullable=False,
        index=True,
    )

    # Actor
    actor: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    target_user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_system_action: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Target
    resource_type: Mapped[Optional[AuditResourceType]] = mapped_column(
        Enum(AuditResourceType),
        nullable=True,
        index=True,
    )
    resource_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    device_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Classification
    status: Mapped[AuditStatus] = mapped_column(Enum(AuditStatus), default=AuditStatus.INFO, nullable=False)
    severity: Mapped[AuditSeverity] = mapped_column(Enum(AuditSeverity), default=AuditSeverity.LOW, nullable=False)
    category: Mapped[AuditCategory] = mapped_column(
        Enum(AuditCategory),
        default=AuditCategory.SYSTEM,
        nullable=False,
        index=True,
    )

    # Detail (PII-bearing, anonymizable)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    location: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    # Request context
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Timestamp (immutable)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(),
        default=utcnow,
        nullable=False,
        index=True,
    )
    retention_date: Mapped[datetime] = mapped_column(DateTime(), nullable=False)

    # Archival
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)

    # Anonymization
    anonymized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)

    def should_retain(self, now: Optional[datetime] = None) -> bool:
        """True until `now` is strictly past the retention date."""
        return self.retention_date >= (now or utcnow())

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action_type={self.action_type.value}, actor={self.actor})>"


@event.listens_for(AuditLog, "before_update")
def _reject_semantic_update(mapper, connection, target: AuditLog) -> None:
    state = inspect(target)
    changed = {
        attr.key
        for attr in state.attrs
        if attr.history.has_changes()
    }
    allowed = set(ARCHIVAL_FIELDS)
    if target.anonymized_at is not None:
        allowed |= ANONYMIZATION_FIELDS
    forbidden = changed - allowed
    if forbidden:
        raise BusinessRuleException(
            f"Audit log entries are immutable; cannot modify {sorted(forbidden)}",
            rule="AUDIT_IMMUTABLE",
            code=ErrorCode.CANNOT_MODIFY,
            details={"audit_log_id": str(target.id), "fields": sorted(forbidden)},
        )


@event.listens_for(AuditLog, "before_delete")
def _reject_early_delete(mapper, connection, target: AuditLog) -> None:
    if target.should_retain():
        raise BusinessRuleException(
            "Audit log entries cannot be deleted before their retention date",
            rule="AUDIT_RETENTION",
            code=ErrorCode.CANNOT_DELETE,
            details={"audit_log_id": str(target.id), "retention_date": target.retention_date.isoformat()},
        )
