"""
VIPER Erasure Ledger - Proof Schemas

Pydantic schemas for proof-related request/response validation.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.models.proof import (
    DeviceType,
    WipingMethod,
    ProofStatus,
    ProofComplianceStandard,
    MIN_WIPING_PASSES,
    MAX_WIPING_PASSES,
    DEFAULT_WIPING_PASSES,
)


# =============================================================================
# NESTED SCHEMAS
# =============================================================================

class ProofComplianceEntry(BaseModel):
    """One standard a proof was assessed against."""
    standard: ProofComplianceStandard
    compliant: bool = False
    notes: Optional[str] = Field(None, max_length=500)


class DeviceMetadata(BaseModel):
    """Descriptive device data supplied at upload."""
    storage_capacity: Optional[str] = None
    storage_type: Optional[str] = None
    manufacturer: Optional[str] = None
    firmware_version: Optional[str] = None
    encryption_status: Optional[str] = None
    previous_owner: Optional[str] = None
    asset_tag: Optional[str] = None
    location: Optional[str] = None
    cost_center: Optional[str] = None


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class ProofCreate(BaseModel):
    """
    Proof upload.

    Blob storage hands over the file reference; the content digest is either
    supplied (`file_hash`) or computed here from `content`.
    """
    device_id: str = Field(..., min_length=1, max_length=100)
    device_type: DeviceType
    device_model: Optional[str] = Field(None, max_length=100)
    serial_number: Optional[str] = Field(None, max_length=100)
    wiping_method: WipingMethod
    wiping_passes: int = Field(DEFAULT_WIPING_PASSES, ge=MIN_WIPING_PASSES, le=MAX_WIPING_PASSES)
    wiping_start: Optional[datetime] = None
    wiping_end: Optional[datetime] = None
    expiration_date: Optional[datetime] = None

    file_path: Optional[str] = Field(None, max_length=500)
    file_name: Optional[str] = Field(None, max_length=255)
    file_size: Optional[int] = Field(None, ge=0)
    mime_type: Optional[str] = Field(None, max_length=100)
    file_hash: Optional[str] = Field(None, max_length=128)
    hash_algorithm: str = "sha256"
    content: Optional[bytes] = Field(None, exclude=True)

    compliance_standards: List[ProofComplianceEntry] = Field(default_factory=list)
    device_metadata: DeviceMetadata = Field(default_factory=DeviceMetadata)
    notes: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode='after')
    def check_wipe_window(self):
        if self.wiping_start and self.wiping_end and self.wiping_end < self.wiping_start:
            raise ValueError("wiping_end must not be before wiping_start")
        if not self.file_hash and self.content is None:
            raise ValueError("Either file_hash or content is required")
        return self


class ProofUpdate(BaseModel):
    """Mutable proof fields. serial_number and device_type lock once issued."""
    device_model: Optional[str] = Field(None, max_length=100)
    serial_number: Optional[str] = Field(None, max_length=100)
    device_type: Optional[DeviceType] = None
    notes: Optional[str] = Field(None, max_length=1000)
    device_metadata: Optional[DeviceMetadata] = None
    compliance_standards: Optional[List[ProofComplianceEntry]] = None


class ProofStatusUpdate(BaseModel):
    """Status transition request."""
    status: ProofStatus
    detail: Optional[str] = Field(None, max_length=1000)
    expected_version: Optional[int] = Field(None, ge=1)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class ProofTrailEntryResponse(BaseModel):
    sequence: int
    action: str
    performed_by: str
    performed_at: datetime
    details: Optional[str] = None
    ip_address: Optional[str] = None
    from_status: Optional[ProofStatus] = None
    to_status: Optional[ProofStatus] = None

    class Config:
        from_attributes = True


class ComplianceSummary(BaseModel):
    total: int
    compliant: int
    percentage: int


class ProofResponse(BaseModel):
    """Proof detail response."""
    id: UUID
    device_id: str
    device_type: DeviceType
    device_model: Optional[str] = None
    serial_number: Optional[str] = None
    wiping_method: WipingMethod
    wiping_passes: int
    wiping_start: Optional[datetime] = None
    wiping_end: Optional[datetime] = None
    wiping_duration: Optional[int] = None
    wiping_duration_formatted: Optional[str] = None
    status: ProofStatus
    version: int
    verification_date: Optional[datetime] = None
    verified_by: Optional[str] = None
    expiration_date: Optional[datetime] = None
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    file_hash: str
    hash_algorithm: str
    compliance_standards: List[Dict[str, Any]] = Field(default_factory=list)
    device_metadata: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    uploaded_by: str
    certificate_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    audit_trail: List[ProofTrailEntryResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ProofListResponse(BaseModel):
    items: List[ProofResponse]
    total: int
    skip: int
    limit: int
