"""
VIPER Erasure Ledger - Certificate Lifecycle Service

Generates signed certificates from verified proofs and drives them through
generated -> issued -> revoked | expired.

Generation reserves every bundled proof with a single conditional UPDATE;
if the reserved row count differs from the number of proofs, the whole
transaction rolls back and no certificate exists.
"""

import logging
import secrets
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, update, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.base import to_naive_utc, utcnow, years_after
from app.models.proof import Proof, ProofStatus
from app.models.certificate import (
    Certificate,
    CertificateDownload,
    CertificateStatus,
    CertificateType,
    DownloadFormat,
    RevocationReason,
)
from app.models.audit import (
    AuditActionType,
    AuditCategory,
    AuditResourceType,
    AuditSeverity,
    SYSTEM_ACTOR,
)
from app.schemas.certificate import CertificateCreate, CertificateUpdate
from app.services.audit_service import AuditEvent, AuditRecorder, audit_recorder
from app.services.proof_service import compliance_summary
from app.utils.error_handling import (
    AuthorizationException,
    BusinessRuleException,
    CertificateNotFoundException,
    ConflictException,
    ErrorCode,
    InvalidTransitionException,
    ProofAlreadyBookedException,
    ProofNotFoundException,
    ProofNotVerifiedException,
    ReservationConflictException,
    ValidationException,
    VersionConflictException,
)
from app.utils.signing import CertificateSigner, format_timestamp, get_certificate_signer, verify

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[CertificateStatus, frozenset] = {
    CertificateStatus.DRAFT: frozenset({CertificateStatus.GENERATED}),
    CertificateStatus.GENERATED: frozenset({CertificateStatus.ISSUED, CertificateStatus.REVOKED}),
    CertificateStatus.ISSUED: frozenset({CertificateStatus.REVOKED, CertificateStatus.EXPIRED}),
    CertificateStatus.REVOKED: frozenset(),
    CertificateStatus.EXPIRED: frozenset(),
}

# Certificates that still hold their proofs
LIVE_STATUSES = (
    CertificateStatus.DRAFT,
    CertificateStatus.GENERATED,
    CertificateStatus.ISSUED,
    CertificateStatus.EXPIRED,
)

IMMUTABLE_STATUSES = (CertificateStatus.ISSUED, CertificateStatus.REVOKED, CertificateStatus.EXPIRED)


# ===========================================
# IDENTIFIERS
# ===========================================

def generate_certificate_id(now: Optional[datetime] = None) -> str:
    """CERT-<year>-<last 6 digits of epoch ms>-<6 random hex>."""
    now = now or utcnow()
    millis = str(int(time.time() * 1000))[-6:]
    return f"CERT-{now.year}-{millis}-{secrets.token_hex(3).upper()}"


def generate_verification_code() -> str:
    """32 hex characters from the OS CSPRNG."""
    return secrets.token_hex(16).upper()


# ===========================================
# SNAPSHOT & PAYLOAD
# ===========================================

def device_snapshot(proof: Proof) -> Dict[str, Any]:
    """Freeze the proof facts a certificate attests to."""
    wiping_date = proof.verification_date or proof.created_at
    return {
        "proof_id": str(proof.id),
        "device_id": proof.device_id,
        "device_type": proof.device_type.value,
        "device_model": proof.device_model,
        "serial_number": proof.serial_number,
        "wiping_method": proof.wiping_method.value,
        "wiping_date": format_timestamp(wiping_date),
        "wiping_duration": proof.wiping_duration,
        "file_hash": proof.file_hash,
        "status": "verified" if proof.status == ProofStatus.VERIFIED else "failed",
    }


def derive_counts(devices: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "total_devices": len(devices),
        "successful_wipes": sum(1 for d in devices if d.get("status") == "verified"),
        "failed_wipes": sum(1 for d in devices if d.get("status") == "failed"),
        "total_wiping_duration": sum(d.get("wiping_duration") or 0 for d in devices),
    }


def canonical_payload(certificate: Certificate) -> Dict[str, Any]:
    """The exact structure that is signed and verified."""
    return {
        "certificate_id": certificate.certificate_id,
        "issued_to": certificate.issued_to,
        "devices": certificate.devices,
        "validity_period": {
            "start": format_timestamp(certificate.validity_start),
            "end": format_timestamp(certificate.validity_end),
        },
        "timestamp": format_timestamp(certificate.created_at),
    }


def verify_certificate_signature(certificate: Certificate) -> bool:
    return verify(canonical_payload(certificate), certificate.signature, certificate.public_key)


def check_compliance(certificate: Certificate) -> Dict[str, Any]:
    summary = compliance_summary(certificate.compliance_standards)
    summary["is_fully_compliant"] = summary["total"] > 0 and summary["compliant"] == summary["total"]
    return summary


def export_projection(certificate: Certificate) -> Dict[str, Any]:
    """
    Canonical data projection for an external renderer.

    Signature fields and the signed payload are included verbatim so the
    export can be verified offline.
    """
    return {
        "certificate_id": certificate.certificate_id,
        "title": certificate.title,
        "description": certificate.description,
        "certificate_type": certificate.certificate_type.value,
        "status": certificate.status.value,
        "issued_to": certificate.issued_to,
        "devices": certificate.devices,
        "compliance_standards": certificate.compliance_standards,
        "compliance": check_compliance(certificate),
        "validity_period": {
            "start": format_timestamp(certificate.validity_start),
            "end": format_timestamp(certificate.validity_end),
        },
        "metadata": {
            "total_devices": certificate.total_devices,
            "successful_wipes": certificate.successful_wipes,
            "failed_wipes": certificate.failed_wipes,
            "total_wiping_duration": certificate.total_wiping_duration,
        },
        "verification": {
            "verification_code": certificate.verification_code,
            "verification_url": certificate.verification_url,
        },
        "digital_signature": {
            "algorithm": certificate.signature_algorithm,
            "signature": certificate.signature,
            "public_key": certificate.public_key,
        },
        "signed_payload": canonical_payload(certificate),
        "revocation": (
            {
                "reason": certificate.revocation_reason.value,
                "date": format_timestamp(certificate.revocation_date),
                "actor": certificate.revoked_by,
            }
            if certificate.status == CertificateStatus.REVOKED
            else None
        ),
        "generated_by": certificate.generated_by,
        "issued_by": certificate.issued_by,
        "issued_at": format_timestamp(certificate.issued_at) if certificate.issued_at else None,
        "created_at": format_timestamp(certificate.created_at),
    }


class CertificateService:
    """Service for the certificate lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        recorder: Optional[AuditRecorder] = None,
        signer: Optional[CertificateSigner] = None,
    ):
        self.db = db
        self.recorder = recorder or audit_recorder
        self._signer = signer

    @property
    def signer(self) -> CertificateSigner:
        if self._signer is None:
            self._signer = get_certificate_signer()
        return self._signer

    # ===========================================
    # READ
    # ===========================================

    async def _fetch_one(self, condition) -> Optional[Certificate]:
        result = await self.db.execute(
            select(Certificate).where(condition).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_certificate(self, certificate_id: uuid.UUID) -> Certificate:
        certificate = await self._fetch_one(Certificate.id == certificate_id)
        if certificate is None:
            raise CertificateNotFoundException(certificate_id)
        return certificate

    async def get_by_certificate_id(self, certificate_id: str) -> Certificate:
        certificate = await self._fetch_one(Certificate.certificate_id == certificate_id)
        if certificate is None:
            raise CertificateNotFoundException(certificate_id)
        return certificate

    async def find_by_verification_code(self, code: str) -> Optional[Certificate]:
        return await self._fetch_one(Certificate.verification_code == code.strip().upper())

    async def list_certificates(
        self,
        status: Optional[CertificateStatus] = None,
        certificate_type: Optional[CertificateType] = None,
        generated_by: Optional[str] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Certificate], int]:
        query = select(Certificate)
        if status:
            query = query.where(Certificate.status == status)
        if certificate_type:
            query = query.where(Certificate.certificate_type == certificate_type)
        if generated_by:
            query = query.where(Certificate.generated_by == generated_by)
        if search:
            query = query.where(
                or_(
                    Certificate.title.ilike(f"%{search}%"),
                    Certificate.certificate_id.ilike(f"%{search}%"),
                )
            )
        total = await self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        result = await self.db.execute(
            query.order_by(Certificate.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_proofs(self, certificate: Certificate) -> List[Proof]:
        result = await self.db.execute(
            select(Proof)
            .where(Proof.certificate_id == certificate.id)
            .order_by(Proof.device_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ===========================================
    # GENERATE
    # ===========================================

    async def _unique_value(self, column, generator) -> str:
        for _ in range(settings.verification_code_max_attempts):
            candidate = generator()
            taken = await self.db.scalar(select(Certificate.id).where(column == candidate))
            if taken is None:
                return candidate
        raise ConflictException(
            f"Could not allocate a unique {column.key} after {settings.verification_code_max_attempts} attempts",
            resource_type="Certificate",
        )

    async def generate(
        self,
        data: CertificateCreate,
        actor: str,
        actor_is_admin: bool = False,
        ip_address: Optional[str] = None,
    ) -> Certificate:
        """
        Bundle verified proofs into a signed certificate.

        Raises:
            ValidationException: empty proof list, a proof not verified, or a
                proof already held by another non-revoked certificate
            ProofNotFoundException: unknown or deleted proof
            AuthorizationException: non-admin bundling someone else's proof
            ReservationConflictException: proofs changed concurrently
        """
        proof_ids = list(dict.fromkeys(data.proof_ids))
        if not proof_ids:
            raise ValidationException("At least one proof is required", field="proof_ids")

        result = await self.db.execute(
            select(Proof)
            .where(Proof.id.in_(proof_ids))
            .where(Proof.is_deleted.is_(False))
            .execution_options(populate_existing=True)
        )
        by_id = {proof.id: proof for proof in result.scalars().all()}
        missing = [pid for pid in proof_ids if pid not in by_id]
        if missing:
            raise ProofNotFoundException(missing[0])
        proofs = [by_id[pid] for pid in proof_ids]

        if not actor_is_admin:
            foreign = [p for p in proofs if p.uploaded_by != actor]
            if foreign:
                raise AuthorizationException(
                    f"Not allowed to certify proof for device '{foreign[0].device_id}' uploaded by another user"
                )

        for proof in proofs:
            if proof.status != ProofStatus.VERIFIED:
                raise ProofNotVerifiedException(proof.device_id, proof.status.value)

        booked_ids = {p.certificate_id for p in proofs if p.certificate_id is not None}
        if booked_ids:
            rows = await self.db.execute(
                select(Certificate.id, Certificate.certificate_id, Certificate.status)
                .where(Certificate.id.in_(booked_ids))
            )
            live = {row.id: row.certificate_id for row in rows if row.status != CertificateStatus.REVOKED}
            for proof in proofs:
                if proof.certificate_id in live:
                    raise ProofAlreadyBookedException(proof.device_id, live[proof.certificate_id])

        now = utcnow()
        if data.validity_period:
            validity_start = to_naive_utc(data.validity_period.start)
            validity_end = to_naive_utc(data.validity_period.end)
        else:
            validity_start = now
            validity_end = years_after(now, settings.certificate_validity_years)

        devices = [device_snapshot(p) for p in proofs]
        counts = derive_counts(devices)
        certificate_code = await self._unique_value(Certificate.certificate_id, lambda: generate_certificate_id(now))
        verification_code = await self._unique_value(Certificate.verification_code, generate_verification_code)

        certificate = Certificate(
            id=uuid.uuid4(),
            certificate_id=certificate_code,
            verification_code=verification_code,
            verification_url=f"{settings.frontend_url.rstrip('/')}/verify/{verification_code}",
            title=data.title,
            description=data.description,
            certificate_type=data.certificate_type,
            status=CertificateStatus.DRAFT,
            version=1,
            issued_to=data.issued_to.model_dump(mode="json", exclude_none=True),
            generated_by=actor,
            devices=devices,
            compliance_standards=[s.model_dump(mode="json") for s in data.compliance_standards],
            validity_start=validity_start,
            validity_end=validity_end,
            notes=data.notes,
            tags=list(data.tags),
            is_public=data.is_public,
            created_at=now,
            updated_at=now,
            **counts,
        )

        try:
            self.db.add(certificate)
            await self.db.flush()

            revoked_certificates = select(Certificate.id).where(Certificate.status == CertificateStatus.REVOKED)
            reserved = await self.db.execute(
                update(Proof)
                .where(Proof.id.in_(proof_ids))
                .where(Proof.status == ProofStatus.VERIFIED)
                .where(Proof.is_deleted.is_(False))
                .where(or_(Proof.certificate_id.is_(None), Proof.certificate_id.in_(revoked_certificates)))
                .values(certificate_id=certificate.id, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if reserved.rowcount != len(proof_ids):
                await self.db.rollback()
                raise ReservationConflictException(len(proof_ids), reserved.rowcount)

            certificate.signature_algorithm = self.signer.algorithm
            certificate.signature = self.signer.sign(canonical_payload(certificate))
            certificate.public_key = self.signer.public_key_pem
            certificate.status = CertificateStatus.GENERATED
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictException(
                "Certificate identifiers collided concurrently; retry",
                resource_type="Certificate",
                code=ErrorCode.VERSION_CONFLICT,
            ) from e
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        logger.info(
            f"Certificate {certificate.certificate_id} generated by {actor} for {len(devices)} device(s)"
        )
        self.recorder.submit(AuditEvent(
            action=f"Generated certificate {certificate.certificate_id}",
            action_type=AuditActionType.CERTIFICATE_GENERATED,
            actor=actor,
            resource_type=AuditResourceType.CERTIFICATE,
            resource_id=str(certificate.id),
            category=AuditCategory.DATA_MODIFICATION,
            severity=AuditSeverity.MEDIUM,
            ip_address=ip_address,
            metadata={
                "certificate_id": certificate.certificate_id,
                "device_ids": [d["device_id"] for d in devices],
                "organization": certificate.issued_to.get("organization"),
            },
        ))
        return await self.get_certificate(certificate.id)

    # ===========================================
    # TRANSITIONS
    # ===========================================

    async def _apply_transition(
        self,
        certificate: Certificate,
        target: CertificateStatus,
        values: Dict[str, Any],
    ) -> None:
        """Conditional UPDATE keyed on the status and version that were read."""
        # Only these locals are read once the session rolls back
        row_id = certificate.id
        public_id = certificate.certificate_id
        current = certificate.status
        read_version = certificate.version
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionException("Certificate", current.value, target.value)
        try:
            result = await self.db.execute(
                update(Certificate)
                .where(Certificate.id == row_id)
                .where(Certificate.status == current)
                .where(Certificate.version == read_version)
                .values(status=target, version=read_version + 1, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                raise VersionConflictException("Certificate", public_id, current.value, read_version)
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def issue(
        self,
        certificate_id: uuid.UUID,
        actor: str,
        ip_address: Optional[str] = None,
    ) -> Certificate:
        """generated -> issued."""
        certificate = await self.get_certificate(certificate_id)
        previous = certificate.status
        await self._apply_transition(
            certificate,
            CertificateStatus.ISSUED,
            {"issued_by": actor, "issued_at": utcnow()},
        )
        logger.info(f"Certificate {certificate.certificate_id} issued by {actor}")
        self.recorder.submit(AuditEvent(
            action=f"Issued certificate {certificate.certificate_id}",
            action_type=AuditActionType.CERTIFICATE_ISSUED,
            actor=actor,
            resource_type=AuditResourceType.CERTIFICATE,
            resource_id=str(certificate.id),
            category=AuditCategory.DATA_MODIFICATION,
            severity=AuditSeverity.MEDIUM,
            ip_address=ip_address,
            metadata={"from_status": previous.value, "to_status": CertificateStatus.ISSUED.value},
        ))
        return await self.get_certificate(certificate_id)

    async def revoke(
        self,
        certificate_id: uuid.UUID,
        reason: str,
        actor: str,
        ip_address: Optional[str] = None,
    ) -> Certificate:
        """
        generated | issued -> revoked (terminal).

        Raises:
            ValidationException: reason outside the closed set
            InvalidTransitionException: already revoked, expired or still draft
        """
        try:
            revocation_reason = RevocationReason(reason)
        except ValueError:
            raise ValidationException(
                f"Invalid revocation reason: {reason}",
                field="reason",
                code=ErrorCode.INVALID_REVOCATION_REASON,
                details={"allowed": [r.value for r in RevocationReason]},
            )

        certificate = await self.get_certificate(certificate_id)
        previous = certificate.status
        await self._apply_transition(
            certificate,
            CertificateStatus.REVOKED,
            {
                "revocation_reason": revocation_reason,
                "revocation_date": utcnow(),
                "revoked_by": actor,
            },
        )
        logger.warning(f"Certificate {certificate.certificate_id} revoked by {actor}: {revocation_reason.value}")
        self.recorder.submit(AuditEvent(
            action=f"Revoked certificate {certificate.certificate_id}",
            action_type=AuditActionType.CERTIFICATE_REVOKED,
            actor=actor,
            resource_type=AuditResourceType.CERTIFICATE,
            resource_id=str(certificate.id),
            details=f"Reason: {revocation_reason.value}",
            category=AuditCategory.SECURITY,
            severity=AuditSeverity.HIGH,
            ip_address=ip_address,
            metadata={"from_status": previous.value, "reason": revocation_reason.value},
        ))
        return await self.get_certificate(certificate_id)

    async def recompute_expiry(self, now: Optional[datetime] = None) -> int:
        """
        Expire issued certificates whose validity has ended.

        Each row is flipped by its own conditional UPDATE on status=issued, so
        a concurrent revoke always wins and a re-run finds nothing new.
        """
        now = now or utcnow()
        rows = await self.db.execute(
            select(Certificate.id, Certificate.certificate_id)
            .where(Certificate.status == CertificateStatus.ISSUED)
            .where(Certificate.validity_end <= now)
        )
        expired = 0
        for cert_uuid, cert_code in rows.all():
            try:
                result = await self.db.execute(
                    update(Certificate)
                    .where(Certificate.id == cert_uuid)
                    .where(Certificate.status == CertificateStatus.ISSUED)
                    .values(status=CertificateStatus.EXPIRED, version=Certificate.version + 1, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
            except SQLAlchemyError:
                await self.db.rollback()
                raise
            if result.rowcount != 1:
                continue
            expired += 1
            self.recorder.submit(AuditEvent(
                action=f"Certificate {cert_code} expired",
                action_type=AuditActionType.CERTIFICATE_EXPIRED,
                actor=SYSTEM_ACTOR,
                resource_type=AuditResourceType.CERTIFICATE,
                resource_id=str(cert_uuid),
                category=AuditCategory.DATA_MODIFICATION,
                severity=AuditSeverity.LOW,
                is_system_action=True,
            ))
        logger.info(f"Expired {expired} certificates")
        return expired

    # ===========================================
    # DESCRIPTIVE UPDATES & DOWNLOADS
    # ===========================================

    async def update_certificate(
        self,
        certificate_id: uuid.UUID,
        data: CertificateUpdate,
        actor: str,
        ip_address: Optional[str] = None,
    ) -> Certificate:
        certificate = await self.get_certificate(certificate_id)
        if certificate.status in IMMUTABLE_STATUSES:
            raise BusinessRuleException(
                f"Certificate {certificate.certificate_id} is {certificate.status.value} and can no longer be modified",
                rule="ISSUED_CERTIFICATE_IMMUTABLE",
                code=ErrorCode.CANNOT_MODIFY,
            )
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        if not changes:
            return certificate
        for key, value in changes.items():
            setattr(certificate, key, value)
        certificate.updated_at = utcnow()
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        self.recorder.submit(AuditEvent(
            action=f"Updated certificate {certificate.certificate_id}",
            action_type=AuditActionType.CERTIFICATE_UPDATED,
            actor=actor,
            resource_type=AuditResourceType.CERTIFICATE,
            resource_id=str(certificate.id),
            category=AuditCategory.DATA_MODIFICATION,
            ip_address=ip_address,
            metadata={"fields": sorted(changes)},
        ))
        return await self.get_certificate(certificate_id)

    async def record_download(
        self,
        certificate_id: uuid.UUID,
        actor: str,
        download_format: DownloadFormat = DownloadFormat.PDF,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Append to the download history and return the export projection."""
        certificate = await self.get_certificate(certificate_id)
        if certificate.status == CertificateStatus.DRAFT:
            raise BusinessRuleException(
                "Draft certificates cannot be downloaded",
                rule="CERTIFICATE_SIGNED_BEFORE_EXPORT",
            )
        self.db.add(CertificateDownload(
            certificate_id=certificate.id,
            downloaded_by=actor,
            downloaded_at=utcnow(),
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
            format=download_format,
        ))
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        self.recorder.submit(AuditEvent(
            action=f"Downloaded certificate {certificate.certificate_id}",
            action_type=AuditActionType.CERTIFICATE_DOWNLOADED,
            actor=actor,
            resource_type=AuditResourceType.CERTIFICATE,
            resource_id=str(certificate.id),
            category=AuditCategory.DATA_ACCESS,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"format": download_format.value},
        ))
        certificate = await self.get_certificate(certificate_id)
        return export_projection(certificate)

    # ===========================================
    # REPORTING
    # ===========================================

    def verify_signature(self, certificate: Certificate) -> bool:
        return verify_certificate_signature(certificate)

    def export_projection(self, certificate: Certificate) -> Dict[str, Any]:
        return export_projection(certificate)

    def check_compliance(self, certificate: Certificate) -> Dict[str, Any]:
        return check_compliance(certificate)

    async def find_expiring(self, days: Optional[int] = None, now: Optional[datetime] = None) -> List[Certificate]:
        """Issued certificates whose validity ends within `days`."""
        days = days if days is not None else settings.certificate_expiry_warning_days
        now = now or utcnow()
        result = await self.db.execute(
            select(Certificate)
            .where(Certificate.status == CertificateStatus.ISSUED)
            .where(Certificate.validity_end > now)
            .where(Certificate.validity_end <= now + timedelta(days=days))
            .order_by(Certificate.validity_end.asc())
        )
        return list(result.scalars().all())

    async def certificate_statistics(self) -> Dict[str, Any]:
        rows = await self.db.execute(
            select(Certificate.status, func.count(Certificate.id)).group_by(Certificate.status)
        )
        by_status = {status.value: count for status, count in rows}
        total_devices = await self.db.scalar(select(func.coalesce(func.sum(Certificate.total_devices), 0)))
        total_downloads = await self.db.scalar(select(func.count(CertificateDownload.id)))
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "issued": by_status.get(CertificateStatus.ISSUED.value, 0),
            "expired": by_status.get(CertificateStatus.EXPIRED.value, 0),
            "revoked": by_status.get(CertificateStatus.REVOKED.value, 0),
            "total_devices": int(total_devices or 0),
            "total_downloads": int(total_downloads or 0),
        }
