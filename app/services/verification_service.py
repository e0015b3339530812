"""
VIPER Erasure Ledger - Public Certificate Verification

Read-only lookup of a certificate by its verification code. Reachable
without authentication, so the result only carries fields intended for
public disclosure.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.certificate import Certificate, CertificateStatus
from app.models.audit import (
    AuditActionType,
    AuditCategory,
    AuditResourceType,
    AuditStatus,
    SYSTEM_ACTOR,
)
from app.services.audit_service import AuditEvent, AuditRecorder, audit_recorder
from app.services.certificate_service import verify_certificate_signature

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    found: bool
    valid: bool = False
    expired: bool = False
    summary: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": self.found,
            "valid": self.valid,
            "expired": self.expired,
            "summary": self.summary,
        }


def public_standards(certificate: Certificate) -> List[Dict[str, Any]]:
    """Standard names and compliance flags only."""
    return [
        {"standard": s.get("standard"), "compliant": bool(s.get("compliant"))}
        for s in certificate.compliance_standards or []
    ]


def public_summary(certificate: Certificate, signature_valid: bool) -> Dict[str, Any]:
    return {
        "certificate_id": certificate.certificate_id,
        "title": certificate.title,
        "organization": (certificate.issued_to or {}).get("organization", ""),
        "status": certificate.status.value,
        "validity_start": certificate.validity_start,
        "validity_end": certificate.validity_end,
        "device_count": certificate.total_devices,
        "standards": public_standards(certificate),
        "signature_valid": signature_valid,
    }


def evaluate(certificate: Certificate, now: datetime) -> VerificationResult:
    """Compute found/valid/expired for a resolved certificate."""
    signature_valid = verify_certificate_signature(certificate)
    expired = certificate.status == CertificateStatus.EXPIRED or now >= certificate.validity_end
    valid = (
        certificate.status == CertificateStatus.ISSUED
        and certificate.is_within_validity(now)
        and signature_valid
    )
    return VerificationResult(
        found=True,
        valid=valid,
        expired=expired,
        summary=public_summary(certificate, signature_valid),
    )


class VerificationService:
    """Service for unauthenticated verification-by-code."""

    def __init__(self, db: AsyncSession, recorder: Optional[AuditRecorder] = None):
        self.db = db
        self.recorder = recorder or audit_recorder

    async def verify_by_code(
        self,
        code: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VerificationResult:
        now = now or utcnow()
        normalized = (code or "").strip().upper()
        certificate = None
        if normalized:
            result = await self.db.execute(
                select(Certificate)
                .where(Certificate.verification_code == normalized)
                .execution_options(populate_existing=True)
            )
            certificate = result.scalar_one_or_none()

        if certificate is None:
            outcome = VerificationResult(found=False)
            logger.info(f"Verification lookup for unknown code from {ip_address or 'unknown'}")
        else:
            outcome = evaluate(certificate, now)
            if not outcome.summary["signature_valid"]:
                logger.warning(f"Certificate {certificate.certificate_id} failed signature verification")

        self.recorder.submit(AuditEvent(
            action=(
                f"Verified certificate {certificate.certificate_id}"
                if certificate is not None
                else "Verification attempted with unknown code"
            ),
            action_type=AuditActionType.CERTIFICATE_VERIFIED,
            actor=SYSTEM_ACTOR,
            resource_type=AuditResourceType.CERTIFICATE,
            resource_id=str(certificate.id) if certificate is not None else None,
            status=AuditStatus.SUCCESS if outcome.valid else AuditStatus.WARNING,
            category=AuditCategory.DATA_ACCESS,
            is_system_action=True,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"found": outcome.found, "valid": outcome.valid, "expired": outcome.expired},
        ))
        return outcome
