"""
VIPER Erasure Ledger - Public Verification Router

Unauthenticated certificate lookup by verification code. Rate limiting is
left to the fronting proxy.
"""

from fastapi import APIRouter, Depends

from app.dependencies import (
    RequestOrigin,
    get_request_origin,
    get_verification_service,
)
from app.schemas.certificate import VerificationResponse
from app.services.verification_service import VerificationService

router = APIRouter(prefix="/verify", tags=["Verification"])


@router.get("/{code}", response_model=VerificationResponse)
async def verify_certificate(
    code: str,
    origin: RequestOrigin = Depends(get_request_origin),
    service: VerificationService = Depends(get_verification_service),
):
    """
    Check a certificate by its verification code.

    An unknown code is a normal outcome (`found: false`), not a 404.
    """
    result = await service.verify_by_code(
        code,
        ip_address=origin.ip_address,
        user_agent=origin.user_agent,
    )
    return result.to_dict()
