"""
VIPER Erasure Ledger - Schemas Package

Pydantic schemas for request/response validation.
"""

from app.schemas.proof import (
    ProofCreate,
    ProofUpdate,
    ProofStatusUpdate,
    ProofResponse,
    ProofListResponse,
    ProofTrailEntryResponse,
    ComplianceSummary,
)
from app.schemas.certificate import (
    CertificateCreate,
    CertificateUpdate,
    CertificateRevoke,
    CertificateDownloadRequest,
    CertificateResponse,
    CertificateListResponse,
    VerificationResponse,
)
from app.schemas.audit import (
    AuditLogResponse,
    AuditLogListResponse,
    AuditStatisticsResponse,
    ArchiveRequest,
    RetentionResult,
)

__all__ = [
    # Proofs
    "ProofCreate",
    "ProofUpdate",
    "ProofStatusUpdate",
    "ProofResponse",
    "ProofListResponse",
    "ProofTrailEntryResponse",
    "ComplianceSummary",
    # Certificates
    "CertificateCreate",
    "CertificateUpdate",
    "CertificateRevoke",
    "CertificateDownloadRequest",
    "CertificateResponse",
    "CertificateListResponse",
    "VerificationResponse",
    # Audit
    "AuditLogResponse",
    "AuditLogListResponse",
    "AuditStatisticsResponse",
    "ArchiveRequest",
    "RetentionResult",
]
