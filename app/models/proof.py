"""
VIPER Erasure Ledger - Proof Model

An erasure proof attests that a single storage device was wiped.

Lifecycle:
- Created on upload with status=pending
- Status only moves along the transition table in ProofService
- Soft-deleted (never physically removed) so certificates and audit
  entries keep resolving
- Locked once an issued certificate references it
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
    Enum as SQLEnum,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, VersionedMixin, utcnow


class DeviceType(str, Enum):
    """Kinds of device an erasure proof can cover."""
    LAPTOP = "laptop"
    DESKTOP = "desktop"
    SERVER = "server"
    MOBILE = "mobile"
    TABLET = "tablet"
    STORAGE = "storage"


class WipingMethod(str, Enum):
    """Recognised sanitisation standards."""
    DOD_5220_22_M = "DoD 5220.22-M"
    NIST_800_88 = "NIST SP 800-88"
    SECURE_ERASE = "Secure Erase"
    GUTMANN = "Gutmann"
    RANDOM = "Random"
    ZERO_FILL = "Zero Fill"


class ProofStatus(str, Enum):
    """Proof status workflow."""
    PENDING = "pending"         # Uploaded, not yet examined
    PROCESSING = "processing"   # Under review
    VERIFIED = "verified"       # Accepted by an auditor
    FAILED = "failed"           # Rejected; a new proof must be uploaded
    EXPIRED = "expired"         # Past expiration_date


class ProofComplianceStandard(str, Enum):
    """Standards a single proof can be assessed against."""
    NIST = "NIST"
    DOD = "DoD"
    ISO = "ISO"
    GDPR = "GDPR"
    HIPAA = "HIPAA"
    SOX = "SOX"
    PCI_DSS = "PCI-DSS"


MIN_WIPING_PASSES = 1
MAX_WIPING_PASSES = 35
DEFAULT_WIPING_PASSES = 3

# Fields that identify the wiped device; frozen once an issued certificate holds the proof
IDENTITY_FIELDS = ("device_id", "device_type", "serial_number", "file_hash", "hash_algorithm")


class Proof(BaseModel, VersionedMixin):
    """
    Erasure proof for a single device.

    Device ids are unique per uploader among non-deleted proofs; that rule
    is enforced by ProofService because soft-deleted rows keep their id.
    """

    __tablename__ = "proofs"

    # Device identity
    device_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    device_type: Mapped[DeviceType] = mapped_column(SQLEnum(DeviceType), nullable=False)
    device_model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Wipe details
    wiping_method: Mapped[WipingMethod] = mapped_column(SQLEnum(WipingMethod), nullable=False)
    wiping_passes: Mapped[int] = mapped_column(Integer, default=DEFAULT_WIPING_PASSES, nullable=False)
    wiping_start: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    wiping_end: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    wiping_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # seconds

    # Status
    status: Mapped[ProofStatus] = mapped_column(
        SQLEnum(ProofStatus),
        default=ProofStatus.PENDING,
        nullable=False,
        index=True,
    )
    verification_date: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    verified_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    expiration_date: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)

    # File reference (bytes live in blob storage)
    file_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    file_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    hash_algorithm: Mapped[str] = mapped_column(String(16), default="sha256", nullable=False)

    # Descriptive data
    compliance_standards: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    device_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Ownership
    uploaded_by: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Booking: at most one live certificate
    certificate_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("certificates.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Soft delete
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    deleted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Relationships
    audit_trail: Mapped[List["ProofAuditEntry"]] = relationship(
        "ProofAuditEntry",
        back_populates="proof",
        cascade="all, delete-orphan",
        order_by="ProofAuditEntry.sequence",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_proofs_uploader_device", "uploaded_by", "device_id"),
    )

    @property
    def wiping_duration_formatted(self) -> Optional[str]:
        """Human readable duration, e.g. '1h 5m 30s'."""
        if self.wiping_duration is None:
            return None
        hours, remainder = divmod(self.wiping_duration, 3600)
        minutes, seconds = divmod(remainder, 60)
        return f"{hours}h {minutes}m {seconds}s"

    def __repr__(self) -> str:
        return f"<Proof(id={self.id}, device_id={self.device_id}, status={self.status})>"


class ProofAuditEntry(BaseModel):
    """
    One entry of a proof's own append-only trail.

    Status changes carry the from/to edge so the trajectory can be replayed
    against the transition table.
    """

    __tablename__ = "proof_audit_entries"

    proof_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("proofs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[str] = mapped_column(String(200), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    from_status: Mapped[Optional[ProofStatus]] = mapped_column(SQLEnum(ProofStatus), nullable=True)
    to_status: Mapped[Optional[ProofStatus]] = mapped_column(SQLEnum(ProofStatus), nullable=True)

    proof: Mapped["Proof"] = relationship("Proof", back_populates="audit_trail")

    __table_args__ = (
        Index("uq_proof_audit_entries_proof_sequence", "proof_id", "sequence", unique=True),
    )

    def __repr__(self) -> str:
        return f"<ProofAuditEntry(proof_id={self.proof_id}, seq={self.sequence}, action={self.action})>"
