"""
VIPER Erasure Ledger - Certificate Router

API endpoints for certificate generation, issue, revocation and export.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.dependencies import (
    Principal,
    RequestOrigin,
    get_certificate_service,
    get_request_origin,
    require_permission,
)
from app.models.certificate import Certificate, CertificateStatus, CertificateType
from app.schemas.certificate import (
    CertificateCreate,
    CertificateDownloadRequest,
    CertificateListResponse,
    CertificateResponse,
    CertificateRevoke,
    CertificateUpdate,
)
from app.services.certificate_service import CertificateService
from app.utils.error_handling import AuthorizationException
from app.utils.permissions import Permission

router = APIRouter(prefix="/certificates", tags=["Certificates"])


def ensure_owner(principal: Principal, certificate: Certificate) -> None:
    """Operators only reach certificates they generated."""
    if not principal.sees_everything and certificate.generated_by != principal.id:
        raise AuthorizationException("You can only access certificates you generated")


@router.post("", response_model=CertificateResponse, status_code=status.HTTP_201_CREATED)
async def generate_certificate(
    data: CertificateCreate,
    principal: Principal = Depends(require_permission([Permission.GENERATE_CERTIFICATES])),
    origin: RequestOrigin = Depends(get_request_origin),
    service: CertificateService = Depends(get_certificate_service),
):
    """
    Bundle verified proofs into a signed certificate (status `generated`).

    Every proof must be verified and not held by another live certificate;
    otherwise nothing is created.
    """
    certificate = await service.generate(
        data,
        actor=principal.id,
        actor_is_admin=principal.is_admin,
        ip_address=origin.ip_address,
    )
    return CertificateResponse.model_validate(certificate)


@router.get("", response_model=CertificateListResponse)
async def list_certificates(
    status_filter: Optional[CertificateStatus] = Query(None, alias="status"),
    certificate_type: Optional[CertificateType] = Query(None),
    search: Optional[str] = Query(None, description="Match on title or certificate id"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    principal: Principal = Depends(require_permission([Permission.VIEW_CERTIFICATES])),
    service: CertificateService = Depends(get_certificate_service),
):
    items, total = await service.list_certificates(
        status=status_filter,
        certificate_type=certificate_type,
        generated_by=None if principal.sees_everything else principal.id,
        search=search,
        skip=skip,
        limit=limit,
    )
    return CertificateListResponse(
        items=[CertificateResponse.model_validate(c) for c in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/statistics")
async def certificate_statistics(
    principal: Principal = Depends(require_permission([Permission.VIEW_ALL_RESOURCES])),
    service: CertificateService = Depends(get_certificate_service),
):
    return await service.certificate_statistics()


@router.get("/expiring", response_model=list[CertificateResponse])
async def expiring_certificates(
    days: Optional[int] = Query(None, ge=1, le=3650),
    principal: Principal = Depends(require_permission([Permission.VIEW_ALL_RESOURCES])),
    service: CertificateService = Depends(get_certificate_service),
):
    """Issued certificates whose validity ends within `days`."""
    certificates = await service.find_expiring(days)
    return [CertificateResponse.model_validate(c) for c in certificates]


@router.get("/{certificate_id}", response_model=CertificateResponse)
async def get_certificate(
    certificate_id: uuid.UUID,
    principal: Principal = Depends(require_permission([Permission.VIEW_CERTIFICATES])),
    service: CertificateService = Depends(get_certificate_service),
):
    certificate = await service.get_certificate(certificate_id)
    ensure_owner(principal, certificate)
    return CertificateResponse.model_validate(certificate)


@router.patch("/{certificate_id}", response_model=CertificateResponse)
async def update_certificate(
    certificate_id: uuid.UUID,
    data: CertificateUpdate,
    principal: Principal = Depends(require_permission([Permission.GENERATE_CERTIFICATES])),
    origin: RequestOrigin = Depends(get_request_origin),
    service: CertificateService = Depends(get_certificate_service),
):
    """Edit descriptive fields. Refused once the certificate is issued."""
    certificate = await service.get_certificate(certificate_id)
    ensure_owner(principal, certificate)
    certificate = await service.update_certificate(
        certificate_id, data, actor=principal.id, ip_address=origin.ip_address
    )
    return CertificateResponse.model_validate(certificate)


@router.post("/{certificate_id}/issue", response_model=CertificateResponse)
async def issue_certificate(
    certificate_id: uuid.UUID,
    principal: Principal = Depends(require_permission([Permission.ISSUE_CERTIFICATES])),
    origin: RequestOrigin = Depends(get_request_origin),
    service: CertificateService = Depends(get_certificate_service),
):
    certificate = await service.issue(certificate_id, actor=principal.id, ip_address=origin.ip_address)
    return CertificateResponse.model_validate(certificate)


@router.post("/{certificate_id}/revoke", response_model=CertificateResponse)
async def revoke_certificate(
    certificate_id: uuid.UUID,
    data: CertificateRevoke,
    principal: Principal = Depends(require_permission([Permission.REVOKE_CERTIFICATES])),
    origin: RequestOrigin = Depends(get_request_origin),
    service: CertificateService = Depends(get_certificate_service),
):
    """
    Revoke a generated or issued certificate.

    Reason must be one of: superseded, compromised, cessation_of_operation,
    privilege_withdrawn, ca_compromise.
    """
    certificate = await service.revoke(
        certificate_id, data.reason, actor=principal.id, ip_address=origin.ip_address
    )
    return CertificateResponse.model_validate(certificate)


@router.get("/{certificate_id}/export")
async def export_certificate(
    certificate_id: uuid.UUID,
    principal: Principal = Depends(require_permission([Permission.VIEW_CERTIFICATES])),
    service: CertificateService = Depends(get_certificate_service),
):
    """Canonical data projection for rendering; signature fields verbatim."""
    certificate = await service.get_certificate(certificate_id)
    ensure_owner(principal, certificate)
    return service.export_projection(certificate)


@router.post("/{certificate_id}/download")
async def download_certificate(
    certificate_id: uuid.UUID,
    data: CertificateDownloadRequest,
    principal: Principal = Depends(require_permission([Permission.VIEW_CERTIFICATES])),
    origin: RequestOrigin = Depends(get_request_origin),
    service: CertificateService = Depends(get_certificate_service),
):
    """Record a download in the certificate's history and return the export projection."""
    certificate = await service.get_certificate(certificate_id)
    ensure_owner(principal, certificate)
    return await service.record_download(
        certificate_id,
        actor=principal.id,
        download_format=data.format,
        ip_address=origin.ip_address,
        user_agent=origin.user_agent,
    )


@router.get("/{certificate_id}/signature")
async def verify_certificate_signature(
    certificate_id: uuid.UUID,
    principal: Principal = Depends(require_permission([Permission.VIEW_CERTIFICATES])),
    service: CertificateService = Depends(get_certificate_service),
):
    certificate = await service.get_certificate(certificate_id)
    ensure_owner(principal, certificate)
    return {
        "certificate_id": certificate.certificate_id,
        "algorithm": certificate.signature_algorithm,
        "signature_valid": service.verify_signature(certificate),
    }


@router.get("/{certificate_id}/compliance")
async def certificate_compliance(
    certificate_id: uuid.UUID,
    principal: Principal = Depends(require_permission([Permission.VIEW_CERTIFICATES])),
    service: CertificateService = Depends(get_certificate_service),
):
    certificate = await service.get_certificate(certificate_id)
    ensure_owner(principal, certificate)
    return service.check_compliance(certificate)
