"""
VIPER Erasure Ledger - Certificate Schemas

Pydantic schemas for certificate-related request/response validation.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, model_validator

from app.models.certificate import (
    CertificateStatus,
    CertificateType,
    CertificateComplianceStandard,
    DownloadFormat,
)


# =============================================================================
# NESTED SCHEMAS
# =============================================================================

class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class IssuedTo(BaseModel):
    """Recipient organization of a certificate."""
    organization: str = Field(..., min_length=1, max_length=200)
    contact_person: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    address: Optional[Address] = None


class CertificateComplianceEntry(BaseModel):
    standard: CertificateComplianceStandard
    version: Optional[str] = None
    compliant: bool = True
    notes: Optional[str] = Field(None, max_length=500)


class ValidityPeriod(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode='after')
    def check_order(self):
        if self.end <= self.start:
            raise ValueError("validity end must be after start")
        return self


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class CertificateCreate(BaseModel):
    """Generate a certificate from verified proofs."""
    proof_ids: List[UUID]
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    certificate_type: CertificateType = CertificateType.SINGLE_DEVICE
    issued_to: IssuedTo
    compliance_standards: List[CertificateComplianceEntry] = Field(default_factory=list)
    validity_period: Optional[ValidityPeriod] = None
    notes: Optional[str] = Field(None, max_length=2000)
    tags: List[str] = Field(default_factory=list)
    is_public: bool = False


class CertificateUpdate(BaseModel):
    """Descriptive fields; not part of the signed payload."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = Field(None, max_length=2000)
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None


class CertificateRevoke(BaseModel):
    reason: str = Field(..., min_length=1)


class CertificateDownloadRequest(BaseModel):
    format: DownloadFormat = DownloadFormat.PDF


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class DigitalSignature(BaseModel):
    algorithm: Optional[str] = None
    signature: Optional[str] = None
    public_key: Optional[str] = None


class Revocation(BaseModel):
    reason: Optional[str] = None
    date: Optional[datetime] = None
    actor: Optional[str] = None


class DownloadRecord(BaseModel):
    downloaded_by: str
    downloaded_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    format: DownloadFormat

    class Config:
        from_attributes = True


class CertificateResponse(BaseModel):
    id: UUID
    certificate_id: str
    verification_code: str
    verification_url: Optional[str] = None
    title: str
    description: Optional[str] = None
    certificate_type: CertificateType
    status: CertificateStatus
    version: int
    issued_to: Dict[str, Any]
    devices: List[Dict[str, Any]]
    compliance_standards: List[Dict[str, Any]]
    validity_start: datetime
    validity_end: datetime
    digital_signature: DigitalSignature
    revocation: Optional[Revocation] = None
    total_devices: int
    successful_wipes: int
    failed_wipes: int
    total_wiping_duration: int
    generated_by: str
    issued_by: Optional[str] = None
    issued_at: Optional[datetime] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_public: bool
    created_at: datetime
    updated_at: datetime
    downloads: List[DownloadRecord] = Field(default_factory=list)

    class Config:
        from_attributes = True

    @model_validator(mode='before')
    @classmethod
    def collect_signature(cls, data):
        if hasattr(data, "signature_algorithm"):
            return {
                **{name: getattr(data, name, None) for name in cls.model_fields if name != "digital_signature"},
                "digital_signature": {
                    "algorithm": data.signature_algorithm,
                    "signature": data.signature,
                    "public_key": data.public_key,
                },
            }
        return data


class CertificateListResponse(BaseModel):
    items: List[CertificateResponse]
    total: int
    skip: int
    limit: int


class VerificationSummary(BaseModel):
    """Publicly disclosable certificate facts."""
    certificate_id: str
    title: str
    organization: str
    status: CertificateStatus
    validity_start: datetime
    validity_end: datetime
    device_count: int
    standards: List[Dict[str, Any]]
    signature_valid: bool


class VerificationResponse(BaseModel):
    found: bool
    valid: bool
    expired: bool
    summary: Optional[VerificationSummary] = None
