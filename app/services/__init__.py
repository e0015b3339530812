"""
VIPER Erasure Ledger - Services Package

Business logic services.
"""

from app.services.audit_service import AuditService, AuditRecorder, AuditEvent, audit_recorder
from app.services.proof_service import ProofService
from app.services.certificate_service import CertificateService
from app.services.verification_service import VerificationService, VerificationResult

__all__ = [
    "AuditService",
    "AuditRecorder",
    "AuditEvent",
    "audit_recorder",
    "ProofService",
    "CertificateService",
    "VerificationService",
    "VerificationResult",
]
