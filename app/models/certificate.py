"""
VIPER Erasure Ledger - Certificate Model

A certificate is the signed, long-lived compliance artifact for one or more
verified proofs. Device facts are snapshotted into `devices` at generation
time so later proof edits cannot alter an issued certificate.
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
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, VersionedMixin, utcnow


class CertificateStatus(str, Enum):
    """Certificate status workflow."""
    DRAFT = "draft"
    GENERATED = "generated"   # Signed, awaiting issue
    ISSUED = "issued"
    REVOKED = "revoked"       # Terminal
    EXPIRED = "expired"       # Set by the expiry sweep


class CertificateType(str, Enum):
    SINGLE_DEVICE = "single_device"
    BATCH_DEVICES = "batch_devices"
    COMPLIANCE_REPORT = "compliance_report"
    AUDIT_REPORT = "audit_report"


class CertificateComplianceStandard(str, Enum):
    """Standards a certificate can attest compliance with."""
    NIST_800_88 = "NIST SP 800-88"
    DOD_5220_22_M = "DoD 5220.22-M"
    ISO_27001 = "ISO 27001"
    GDPR = "GDPR"
    HIPAA = "HIPAA"
    SOX = "SOX"
    PCI_DSS = "PCI-DSS"


class RevocationReason(str, Enum):
    SUPERSEDED = "superseded"
    COMPROMISED = "compromised"
    CESSATION_OF_OPERATION = "cessation_of_operation"
    PRIVILEGE_WITHDRAWN = "privilege_withdrawn"
    CA_COMPROMISE = "ca_compromise"


class DownloadFormat(str, Enum):
    PDF = "pdf"
    HTML = "html"
    XML = "xml"
    JSON = "json"


class Certificate(BaseModel, VersionedMixin):
    """
    Signed compliance certificate.

    The signature covers certificate_id, issued_to, devices, the validity
    period and created_at. Revocation fields are populated only when
    status is revoked.
    """

    __tablename__ = "certificates"

    # Identity
    certificate_id: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    verification_code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    verification_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Description
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    certificate_type: Mapped[CertificateType] = mapped_column(
        SQLEnum(CertificateType),
        default=CertificateType.SINGLE_DEVICE,
        nullable=False,
    )

    # Status
    status: Mapped[CertificateStatus] = mapped_column(
        SQLEnum(CertificateStatus),
        default=CertificateStatus.DRAFT,
        nullable=False,
        index=True,
    )

    # Parties
    issued_to: Mapped[dict] = mapped_column(JSON, nullable=False)
    generated_by: Mapped[str] = mapped_column(String(100), nullable=False)
    issued_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)

    # Snapshots
    devices: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    compliance_standards: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Validity
    validity_start: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    validity_end: Mapped[datetime] = mapped_column(DateTime(), nullable=False, index=True)

    # Digital signature
    signature_algorithm: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    public_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Derived counts
    total_devices: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_wipes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_wipes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_wiping_duration: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Revocation
    revocation_reason: Mapped[Optional[RevocationReason]] = mapped_column(
        SQLEnum(RevocationReason),
        nullable=True,
    )
    revocation_date: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    revoked_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Extras
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    downloads: Mapped[List["CertificateDownload"]] = relationship(
        "CertificateDownload",
        back_populates="certificate",
        cascade="all, delete-orphan",
        order_by="CertificateDownload.downloaded_at",
        lazy="selectin",
    )

    @property
    def revocation(self) -> Optional[dict]:
        if self.status != CertificateStatus.REVOKED:
            return None
        return {
            "reason": self.revocation_reason.value if self.revocation_reason else None,
            "date": self.revocation_date,
            "actor": self.revoked_by,
        }

    def is_within_validity(self, now: datetime) -> bool:
        return self.validity_start <= now < self.validity_end

    def __repr__(self) -> str:
        return f"<Certificate(id={self.id}, certificate_id={self.certificate_id}, status={self.status})>"


class CertificateDownload(BaseModel):
    """Append-only record of a certificate export."""

    __tablename__ = "certificate_downloads"

    certificate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("certificates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    downloaded_by: Mapped[str] = mapped_column(String(100), nullable=False)
    downloaded_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    format: Mapped[DownloadFormat] = mapped_column(SQLEnum(DownloadFormat), default=DownloadFormat.PDF, nullable=False)

    certificate: Mapped["Certificate"] = relationship("Certificate", back_populates="downloads")
