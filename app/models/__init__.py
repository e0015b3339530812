"""
VIPER Erasure Ledger - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin, VersionedMixin, to_naive_utc, utcnow, years_after
from app.models.proof import (
    Proof,
    ProofAuditEntry,
    ProofStatus,
    DeviceType,
    WipingMethod,
    ProofComplianceStandard,
)
from app.models.certificate import (
    Certificate,
    CertificateDownload,
    CertificateStatus,
    CertificateType,
    CertificateComplianceStandard,
    RevocationReason,
    DownloadFormat,
)
from app.models.audit import (
    AuditLog,
    AuditActionType,
    AuditStatus,
    AuditSeverity,
    AuditCategory,
    AuditResourceType,
    SYSTEM_ACTOR,
)

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "VersionedMixin",
    "to_naive_utc",
    "utcnow",
    "years_after",
    # Proofs
    "Proof",
    "ProofAuditEntry",
    "ProofStatus",
    "DeviceType",
    "WipingMethod",
    "ProofComplianceStandard",
    # Certificates
    "Certificate",
    "CertificateDownload",
    "CertificateStatus",
    "CertificateType",
    "CertificateComplianceStandard",
    "RevocationReason",
    "DownloadFormat",
    # Audit
    "AuditLog",
    "AuditActionType",
    "AuditStatus",
    "AuditSeverity",
    "AuditCategory",
    "AuditResourceType",
    "SYSTEM_ACTOR",
]
