"""
VIPER Erasure Ledger - Proof Router

API endpoints for erasure proof upload and lifecycle.
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.dependencies import (
    Principal,
    RequestOrigin,
    get_proof_service,
    get_request_origin,
    require_permission,
)
from app.models.proof import DeviceType, Proof, ProofStatus, WipingMethod
from app.schemas.proof import (
    ComplianceSummary,
    ProofCreate,
    ProofListResponse,
    ProofResponse,
    ProofStatusUpdate,
    ProofTrailEntryResponse,
    ProofUpdate,
)
from app.services.proof_service import ProofService
from app.utils.error_handling import AuthorizationException
from app.utils.permissions import Permission

router = APIRouter(prefix="/proofs", tags=["Proofs"])


def ensure_owner(principal: Principal, proof: Proof) -> None:
    """Operators only reach proofs they uploaded."""
    if not principal.sees_everything and proof.uploaded_by != principal.id:
        raise AuthorizationException("You can only access proofs you uploaded")


@router.post("", response_model=ProofResponse, status_code=status.HTTP_201_CREATED)
async def upload_proof(
    data: ProofCreate,
    principal: Principal = Depends(require_permission([Permission.UPLOAD_PROOFS])),
    origin: RequestOrigin = Depends(get_request_origin),
    service: ProofService = Depends(get_proof_service),
):
    """
    Register an erasure proof.

    The file itself lives in blob storage; the request carries its reference
    and either the content digest or the raw content to hash.
    """
    proof = await service.create_proof(data, uploaded_by=principal.id, ip_address=origin.ip_address)
    return ProofResponse.model_validate(proof)


@router.get("", response_model=ProofListResponse)
async def list_proofs(
    status_filter: Optional[ProofStatus] = Query(None, alias="status"),
    device_type: Optional[DeviceType] = Query(None),
    wiping_method: Optional[WipingMethod] = Query(None),
    device_id: Optional[str] = Query(None, description="Substring match on device id"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    principal: Principal = Depends(require_permission([Permission.VIEW_PROOFS])),
    service: ProofService = Depends(get_proof_service),
):
    """List proofs. Operators see their own uploads only."""
    items, total = await service.list_proofs(
        status=status_filter,
        device_type=device_type,
        wiping_method=wiping_method,
        device_id=device_id,
        uploaded_by=None if principal.sees_everything else principal.id,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )
    return ProofListResponse(
        items=[ProofResponse.model_validate(p) for p in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/statistics")
async def proof_statistics(
    principal: Principal = Depends(require_permission([Permission.VIEW_PROOFS])),
    service: ProofService = Depends(get_proof_service),
):
    """Counts by status, device type and wiping method."""
    return await service.proof_statistics(
        uploaded_by=None if principal.sees_everything else principal.id
    )


@router.get("/{proof_id}", response_model=ProofResponse)
async def get_proof(
    proof_id: uuid.UUID,
    principal: Principal = Depends(require_permission([Permission.VIEW_PROOFS])),
    service: ProofService = Depends(get_proof_service),
):
    proof = await service.get_proof(proof_id)
    ensure_owner(principal, proof)
    return ProofResponse.model_validate(proof)


@router.get("/{proof_id}/history", response_model=list[ProofTrailEntryResponse])
async def get_status_history(
    proof_id: uuid.UUID,
    principal: Principal = Depends(require_permission([Permission.VIEW_PROOFS])),
    service: ProofService = Depends(get_proof_service),
):
    """Status-change entries of the proof's trail, oldest first."""
    proof = await service.get_proof(proof_id, include_deleted=True)
    ensure_owner(principal, proof)
    entries = await service.status_history(proof_id)
    return [ProofTrailEntryResponse.model_validate(e) for e in entries]


@router.get("/{proof_id}/compliance", response_model=ComplianceSummary)
async def get_compliance_summary(
    proof_id: uuid.UUID,
    principal: Principal = Depends(require_permission([Permission.VIEW_PROOFS])),
    service: ProofService = Depends(get_proof_service),
):
    proof = await service.get_proof(proof_id)
    ensure_owner(principal, proof)
    return service.compliance_summary(proof)


@router.patch("/{proof_id}", response_model=ProofResponse)
async def update_proof(
    proof_id: uuid.UUID,
    data: ProofUpdate,
    principal: Principal = Depends(require_permission([Permission.EDIT_PROOFS])),
    origin: RequestOrigin = Depends(get_request_origin),
    service: ProofService = Depends(get_proof_service),
):
    """Update descriptive fields. Identity fields lock once an issued certificate holds the proof."""
    proof = await service.get_proof(proof_id)
    ensure_owner(principal, proof)
    proof = await service.update_proof(proof_id, data, actor=principal.id, ip_address=origin.ip_address)
    return ProofResponse.model_validate(proof)


@router.patch("/{proof_id}/status", response_model=ProofResponse)
async def transition_proof_status(
    proof_id: uuid.UUID,
    data: ProofStatusUpdate,
    principal: Principal = Depends(require_permission([Permission.TRANSITION_PROOFS])),
    origin: RequestOrigin = Depends(get_request_origin),
    service: ProofService = Depends(get_proof_service),
):
    """
    Move a proof to a new status.

    Pass `expected_version` from the last read to guard against concurrent
    updates; a stale version yields 409 with `retryable: true`.
    """
    proof = await service.transition_status(
        proof_id,
        data.status,
        actor=principal.id,
        detail=data.detail,
        expected_version=data.expected_version,
        ip_address=origin.ip_address,
    )
    return ProofResponse.model_validate(proof)


@router.delete("/{proof_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_proof(
    proof_id: uuid.UUID,
    principal: Principal = Depends(require_permission([Permission.DELETE_PROOFS])),
    origin: RequestOrigin = Depends(get_request_origin),
    service: ProofService = Depends(get_proof_service),
):
    """Soft-delete a proof. Refused while an issued certificate holds it."""
    proof = await service.get_proof(proof_id)
    ensure_owner(principal, proof)
    await service.delete_proof(proof_id, actor=principal.id, ip_address=origin.ip_address)
