"""
VIPER Erasure Ledger - Proof Lifecycle Service

Owns a proof's status state machine and compliance scoring.

Transition table:
    pending    -> processing | verified | failed
    processing -> verified | failed
    verified   -> expired        (expiry sweep only)
    failed, expired: terminal

Every status change is a conditional UPDATE keyed on the status and version
that were read, committed together with the proof's trail entry. A stale
read loses with VersionConflictException instead of overwriting.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.base import to_naive_utc, utcnow, years_after
from app.models.proof import Proof, ProofAuditEntry, ProofStatus, DeviceType, WipingMethod
from app.models.certificate import Certificate, CertificateStatus
from app.models.audit import (
    AuditActionType,
    AuditCategory,
    AuditResourceType,
    AuditSeverity,
    SYSTEM_ACTOR,
)
from app.schemas.proof import ProofCreate, ProofUpdate
from app.services.audit_service import AuditEvent, AuditRecorder, audit_recorder
from app.utils.error_handling import (
    DuplicateEntryException,
    ErrorCode,
    InvalidTransitionException,
    ProofLockedException,
    ProofNotFoundException,
    ValidationException,
    VersionConflictException,
)
from app.utils.signing import hash_bytes, is_valid_digest

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[ProofStatus, frozenset] = {
    ProofStatus.PENDING: frozenset({ProofStatus.PROCESSING, ProofStatus.VERIFIED, ProofStatus.FAILED}),
    ProofStatus.PROCESSING: frozenset({ProofStatus.VERIFIED, ProofStatus.FAILED}),
    ProofStatus.VERIFIED: frozenset({ProofStatus.EXPIRED}),
    ProofStatus.FAILED: frozenset(),
    ProofStatus.EXPIRED: frozenset(),
}

# Time-driven edges; callers cannot request them
SYSTEM_ONLY_TRANSITIONS = frozenset({(ProofStatus.VERIFIED, ProofStatus.EXPIRED)})

# Certificate states that freeze the proofs they hold
LOCKING_CERTIFICATE_STATUSES = (CertificateStatus.ISSUED, CertificateStatus.EXPIRED)

LOCKED_UPDATE_FIELDS = ("serial_number", "device_type")


# ===========================================
# PURE LIFECYCLE FUNCTIONS
# ===========================================

def is_valid_transition(current: ProofStatus, target: ProofStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_valid_trajectory(statuses: List[ProofStatus]) -> bool:
    """True if consecutive statuses are all edges of the transition table."""
    return all(is_valid_transition(a, b) for a, b in zip(statuses, statuses[1:]))


def derive_wiping_duration(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    """Whole seconds between wipe start and end, or None if either is unknown."""
    if start is None or end is None:
        return None
    if end < start:
        raise ValidationException("wiping_end must not be before wiping_start", field="wiping_end")
    return int((end - start).total_seconds())


def default_expiration_date(created_at: datetime, years: Optional[int] = None) -> datetime:
    return years_after(created_at, years if years is not None else settings.proof_retention_years)


def compliance_summary(standards: Optional[List[Dict[str, Any]]]) -> Dict[str, int]:
    """
    Score a list of {standard, compliant, notes} entries.

    Returns:
        {"total", "compliant", "percentage"}; an empty list scores 0/0/0
    """
    standards = standards or []
    total = len(standards)
    compliant = sum(1 for s in standards if s.get("compliant"))
    percentage = round(compliant / total * 100) if total else 0
    return {"total": total, "compliant": compliant, "percentage": percentage}


def is_expired(proof: Proof, now: Optional[datetime] = None) -> bool:
    return proof.expiration_date is not None and proof.expiration_date < (now or utcnow())


class ProofService:
    """Service for the proof lifecycle."""

    def __init__(self, db: AsyncSession, recorder: Optional[AuditRecorder] = None):
        self.db = db
        self.recorder = recorder or audit_recorder

    # ===========================================
    # READ
    # ===========================================

    async def get_proof(self, proof_id: uuid.UUID, include_deleted: bool = False) -> Proof:
        """Fetch a proof, always reloading its current row state."""
        query = (
            select(Proof)
            .where(Proof.id == proof_id)
            .execution_options(populate_existing=True)
        )
        if not include_deleted:
            query = query.where(Proof.is_deleted.is_(False))
        result = await self.db.execute(query)
        proof = result.scalar_one_or_none()
        if proof is None:
            raise ProofNotFoundException(proof_id)
        return proof

    async def list_proofs(
        self,
        status: Optional[ProofStatus] = None,
        device_type: Optional[DeviceType] = None,
        wiping_method: Optional[WipingMethod] = None,
        device_id: Optional[str] = None,
        uploaded_by: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Proof], int]:
        query = select(Proof).where(Proof.is_deleted.is_(False))
        if status:
            query = query.where(Proof.status == status)
        if device_type:
            query = query.where(Proof.device_type == device_type)
        if wiping_method:
            query = query.where(Proof.wiping_method == wiping_method)
        if device_id:
            query = query.where(Proof.device_id.ilike(f"%{device_id}%"))
        if uploaded_by:
            query = query.where(Proof.uploaded_by == uploaded_by)
        if start_date:
            query = query.where(Proof.created_at >= start_date)
        if end_date:
            query = query.where(Proof.created_at <= end_date)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        result = await self.db.execute(
            query.order_by(Proof.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    async def status_history(self, proof_id: uuid.UUID) -> List[ProofAuditEntry]:
        """Status-change entries of a proof's trail, oldest first."""
        await self.get_proof(proof_id, include_deleted=True)
        result = await self.db.execute(
            select(ProofAuditEntry)
            .where(ProofAuditEntry.proof_id == proof_id)
            .where(ProofAuditEntry.to_status.is_not(None))
            .order_by(ProofAuditEntry.sequence)
        )
        return list(result.scalars().all())

    async def booking_certificate(self, proof: Proof) -> Optional[Certificate]:
        if proof.certificate_id is None:
            return None
        result = await self.db.execute(
            select(Certificate)
            .where(Certificate.id == proof.certificate_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _locking_certificate(self, proof: Proof) -> Optional[Certificate]:
        certificate = await self.booking_certificate(proof)
        if certificate is not None and certificate.status in LOCKING_CERTIFICATE_STATUSES:
            return certificate
        return None

    # ===========================================
    # CREATE
    # ===========================================

    async def create_proof(
        self,
        data: ProofCreate,
        uploaded_by: str,
        ip_address: Optional[str] = None,
    ) -> Proof:
        """
        Ingest an uploaded proof.

        The digest is computed from `content` when given and must match any
        supplied `file_hash`; otherwise the supplied digest is shape-checked.

        Raises:
            ValidationException: hash missing, malformed or mismatched
            DuplicateEntryException: uploader already has a live proof for the device
        """
        algorithm = data.hash_algorithm.lower()
        if data.content is not None:
            file_hash = hash_bytes(data.content, algorithm)
            if data.file_hash and data.file_hash.lower() != file_hash:
                raise ValidationException(
                    "Supplied file hash does not match file content",
                    field="file_hash",
                    code=ErrorCode.INVALID_HASH,
                    details={"expected": file_hash, "supplied": data.file_hash},
                )
        else:
            file_hash = (data.file_hash or "").lower()
            if not is_valid_digest(file_hash, algorithm):
                raise ValidationException(
                    f"file_hash is not a valid {algorithm} digest",
                    field="file_hash",
                    code=ErrorCode.INVALID_HASH,
                )

        existing = await self.db.scalar(
            select(Proof.id)
            .where(Proof.uploaded_by == uploaded_by)
            .where(Proof.device_id == data.device_id)
            .where(Proof.is_deleted.is_(False))
        )
        if existing is not None:
            raise DuplicateEntryException("Proof", "device_id", data.device_id)

        now = utcnow()
        wiping_start = to_naive_utc(data.wiping_start)
        wiping_end = to_naive_utc(data.wiping_end)

        proof = Proof(
            id=uuid.uuid4(),
            device_id=data.device_id,
            device_type=data.device_type,
            device_model=data.device_model,
            serial_number=data.serial_number,
            wiping_method=data.wiping_method,
            wiping_passes=data.wiping_passes,
            wiping_start=wiping_start,
            wiping_end=wiping_end,
            wiping_duration=derive_wiping_duration(wiping_start, wiping_end),
            status=ProofStatus.PENDING,
            version=1,
            expiration_date=to_naive_utc(data.expiration_date) or default_expiration_date(now),
            file_path=data.file_path,
            file_name=data.file_name,
            file_size=data.file_size,
            mime_type=data.mime_type,
            file_hash=file_hash,
            hash_algorithm=algorithm,
            compliance_standards=[s.model_dump(mode="json") for s in data.compliance_standards],
            device_metadata=data.device_metadata.model_dump(exclude_none=True),
            notes=data.notes,
            uploaded_by=uploaded_by,
            created_at=now,
            updated_at=now,
        )
        self.db.add(proof)
        self.db.add(ProofAuditEntry(
            proof_id=proof.id,
            sequence=1,
            action="Proof uploaded",
            performed_by=uploaded_by,
            performed_at=now,
            details=f"Proof for device {data.device_id} uploaded",
            ip_address=ip_address,
            to_status=ProofStatus.PENDING,
        ))
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        logger.info(f"Proof {proof.id} uploaded for device {proof.device_id} by {uploaded_by}")
        self.recorder.submit(AuditEvent(
            action=f"Uploaded proof for device {proof.device_id}",
            action_type=AuditActionType.PROOF_UPLOADED,
            actor=uploaded_by,
            resource_type=AuditResourceType.PROOF,
            resource_id=str(proof.id),
            device_id=proof.device_id,
            category=AuditCategory.DATA_MODIFICATION,
            ip_address=ip_address,
            metadata={"file_hash": file_hash, "wiping_method": proof.wiping_method.value},
        ))
        return await self.get_proof(proof.id)

    # ===========================================
    # STATUS TRANSITIONS
    # ===========================================

    async def _next_sequence(self, proof_id: uuid.UUID) -> int:
        current = await self.db.scalar(
            select(func.max(ProofAuditEntry.sequence)).where(ProofAuditEntry.proof_id == proof_id)
        )
        return (current or 0) + 1

    async def transition_status(
        self,
        proof_id: uuid.UUID,
        new_status: ProofStatus,
        actor: str,
        detail: Optional[str] = None,
        expected_version: Optional[int] = None,
        expected_status: Optional[ProofStatus] = None,
        ip_address: Optional[str] = None,
        system: bool = False,
    ) -> Proof:
        """
        Move a proof along the transition table.

        Args:
            expected_version / expected_status: the state the caller read;
                if the proof has moved on since, the call loses with a
                retryable VersionConflictException
            system: allow time-driven edges (verified -> expired)

        Raises:
            InvalidTransitionException: edge not in the table
            VersionConflictException: concurrent modification won
        """
        new_status = ProofStatus(new_status)
        proof = await self.get_proof(proof_id)
        current = proof.status

        if expected_version is not None and expected_version != proof.version:
            raise VersionConflictException("Proof", proof_id, current.value, expected_version)
        if expected_status is not None and ProofStatus(expected_status) != current:
            raise VersionConflictException("Proof", proof_id, ProofStatus(expected_status).value, expected_version)

        if not is_valid_transition(current, new_status) or (
            (current, new_status) in SYSTEM_ONLY_TRANSITIONS and not system
        ):
            raise InvalidTransitionException("Proof", current.value, new_status.value)

        read_version = proof.version
        now = utcnow()
        values: Dict[str, Any] = {
            "status": new_status,
            "version": read_version + 1,
            "updated_at": now,
        }
        if new_status == ProofStatus.VERIFIED:
            values["verification_date"] = now
            values["verified_by"] = actor

        try:
            result = await self.db.execute(
                update(Proof)
                .where(Proof.id == proof_id)
                .where(Proof.status == current)
                .where(Proof.version == read_version)
                .where(Proof.is_deleted.is_(False))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                raise VersionConflictException("Proof", proof_id, current.value, read_version)

            self.db.add(ProofAuditEntry(
                proof_id=proof_id,
                sequence=await self._next_sequence(proof_id),
                action=f"Status changed from {current.value} to {new_status.value}",
                performed_by=actor,
                performed_at=now,
                details=detail,
                ip_address=ip_address,
                from_status=current,
                to_status=new_status,
            ))
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        logger.info(f"Proof {proof_id} status {current.value} -> {new_status.value} by {actor}")

        action_type = {
            ProofStatus.VERIFIED: AuditActionType.PROOF_VERIFIED,
            ProofStatus.FAILED: AuditActionType.PROOF_FAILED,
            ProofStatus.EXPIRED: AuditActionType.PROOF_EXPIRED,
        }.get(new_status, AuditActionType.PROOF_STATUS_CHANGED)
        self.recorder.submit(AuditEvent(
            action=f"Proof status changed from {current.value} to {new_status.value}",
            action_type=action_type,
            actor=actor,
            resource_type=AuditResourceType.PROOF,
            resource_id=str(proof_id),
            device_id=proof.device_id,
            details=detail,
            category=AuditCategory.DATA_MODIFICATION,
            severity=AuditSeverity.MEDIUM if new_status in (ProofStatus.VERIFIED, ProofStatus.FAILED) else AuditSeverity.LOW,
            is_system_action=actor == SYSTEM_ACTOR,
            ip_address=ip_address,
            metadata={"from_status": current.value, "to_status": new_status.value, "version": read_version + 1},
        ))
        return await self.get_proof(proof_id)

    async def expire_proofs(self, now: Optional[datetime] = None) -> int:
        """Move verified proofs past their expiration date to expired."""
        now = now or utcnow()
        result = await self.db.execute(
            select(Proof.id, Proof.version)
            .where(Proof.status == ProofStatus.VERIFIED)
            .where(Proof.expiration_date.is_not(None))
            .where(Proof.expiration_date < now)
            .where(Proof.is_deleted.is_(False))
        )
        expired = 0
        for proof_id, version in result.all():
            try:
                await self.transition_status(
                    proof_id,
                    ProofStatus.EXPIRED,
                    actor=SYSTEM_ACTOR,
                    detail="Expiration date reached",
                    expected_version=version,
                    system=True,
                )
                expired += 1
            except (VersionConflictException, InvalidTransitionException, ProofNotFoundException) as e:
                # Changed under us; the next sweep re-evaluates it
                logger.info(f"Skipping expiry of proof {proof_id}: {e.message}")
        logger.info(f"Expired {expired} proofs")
        return expired

    # ===========================================
    # UPDATE / DELETE
    # ===========================================

    async def update_proof(
        self,
        proof_id: uuid.UUID,
        data: ProofUpdate,
        actor: str,
        ip_address: Optional[str] = None,
    ) -> Proof:
        """
        Update descriptive proof fields.

        Raises:
            ProofLockedException: identity fields changed while an issued certificate holds the proof
        """
        proof = await self.get_proof(proof_id)
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key in ("device_model", "serial_number", "notes")
        }
        if "compliance_standards" in changes:
            changes["compliance_standards"] = [s.model_dump(mode="json") for s in data.compliance_standards]
        if "device_metadata" in changes:
            changes["device_metadata"] = data.device_metadata.model_dump(exclude_none=True)
        if not changes:
            return proof

        if any(f in changes and changes[f] != getattr(proof, f) for f in LOCKED_UPDATE_FIELDS):
            certificate = await self._locking_certificate(proof)
            if certificate is not None:
                raise ProofLockedException(proof.device_id, "modify identity fields of", certificate.certificate_id)

        changed_fields = []
        for key, value in changes.items():
            if getattr(proof, key) != value:
                setattr(proof, key, value)
                changed_fields.append(key)

        if not changed_fields:
            return proof

        now = utcnow()
        proof.updated_at = now
        self.db.add(ProofAuditEntry(
            proof_id=proof.id,
            sequence=await self._next_sequence(proof.id),
            action="Proof updated",
            performed_by=actor,
            performed_at=now,
            details=f"Updated fields: {', '.join(sorted(changed_fields))}",
            ip_address=ip_address,
        ))
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        self.recorder.submit(AuditEvent(
            action=f"Updated proof for device {proof.device_id}",
            action_type=AuditActionType.PROOF_UPDATED,
            actor=actor,
            resource_type=AuditResourceType.PROOF,
            resource_id=str(proof.id),
            device_id=proof.device_id,
            category=AuditCategory.DATA_MODIFICATION,
            ip_address=ip_address,
            metadata={"fields": sorted(changed_fields)},
        ))
        return await self.get_proof(proof.id)

    async def delete_proof(
        self,
        proof_id: uuid.UUID,
        actor: str,
        ip_address: Optional[str] = None,
    ) -> None:
        """
        Soft-delete a proof.

        Raises:
            ProofLockedException: an issued certificate holds the proof
        """
        proof = await self.get_proof(proof_id)
        certificate = await self._locking_certificate(proof)
        if certificate is not None:
            raise ProofLockedException(proof.device_id, "delete", certificate.certificate_id)

        now = utcnow()
        proof.is_deleted = True
        proof.deleted_at = now
        proof.deleted_by = actor
        proof.updated_at = now
        self.db.add(ProofAuditEntry(
            proof_id=proof.id,
            sequence=await self._next_sequence(proof.id),
            action="Proof deleted",
            performed_by=actor,
            performed_at=now,
            ip_address=ip_address,
        ))
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        logger.info(f"Proof {proof_id} soft-deleted by {actor}")
        self.recorder.submit(AuditEvent(
            action=f"Deleted proof for device {proof.device_id}",
            action_type=AuditActionType.PROOF_DELETED,
            actor=actor,
            resource_type=AuditResourceType.PROOF,
            resource_id=str(proof.id),
            device_id=proof.device_id,
            category=AuditCategory.DATA_MODIFICATION,
            severity=AuditSeverity.MEDIUM,
            ip_address=ip_address,
        ))

    # ===========================================
    # REPORTING
    # ===========================================

    def compliance_summary(self, proof: Proof) -> Dict[str, int]:
        return compliance_summary(proof.compliance_standards)

    async def proof_statistics(self, uploaded_by: Optional[str] = None) -> Dict[str, Any]:
        """Counts by status, device type and wiping method, plus average wipe duration."""
        conditions = [Proof.is_deleted.is_(False)]
        if uploaded_by:
            conditions.append(Proof.uploaded_by == uploaded_by)

        async def grouped(column) -> Dict[str, int]:
            rows = await self.db.execute(
                select(column, func.count(Proof.id)).where(*conditions).group_by(column)
            )
            return {row[0].value: row[1] for row in rows}

        by_status = await grouped(Proof.status)
        by_device_type = await grouped(Proof.device_type)
        by_wiping_method = await grouped(Proof.wiping_method)
        average_duration = await self.db.scalar(
            select(func.avg(Proof.wiping_duration)).where(*conditions)
        )

        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_device_type": by_device_type,
            "by_wiping_method": by_wiping_method,
            "average_wiping_duration": round(float(average_duration)) if average_duration is not None else 0,
        }
