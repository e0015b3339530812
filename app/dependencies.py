"""
VIPER Erasure Ledger - FastAPI Dependencies

Shared dependencies for authentication, database sessions, and RBAC.

This module provides dependency injection for:
1. Database sessions
2. The calling principal (decoded from the identity provider's JWT)
3. Permission-based access control
4. Request origin (IP address, user agent) for audit entries
5. Lifecycle services wired to the shared audit recorder and signer
"""

from dataclasses import dataclass
from typing import List, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.services.audit_service import AuditRecorder, audit_recorder
from app.services.certificate_service import CertificateService
from app.services.proof_service import ProofService
from app.services.verification_service import VerificationService
from app.utils.permissions import Permission, Role, has_permission
from app.utils.security import verify_access_token
from app.utils.signing import CertificateSigner, get_certificate_signer


# HTTP Bearer token security
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as asserted by the identity provider."""
    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def can(self, permission: Permission) -> bool:
        return has_permission(self.role, permission)

    @property
    def sees_everything(self) -> bool:
        return self.can(Permission.VIEW_ALL_RESOURCES)


@dataclass(frozen=True)
class RequestOrigin:
    ip_address: Optional[str]
    user_agent: Optional[str]


# ===========================================
# AUTHENTICATION
# ===========================================

async def get_current_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """
    Get the calling principal from the bearer JWT.

    Token can be provided via:
    1. Authorization: Bearer <token> header
    2. access_token cookie

    Raises:
        HTTPException: If the token is missing, invalid or carries an unknown role
    """
    token = None

    if credentials:
        token = credentials.credentials
    else:
        token = request.cookies.get("access_token")
        if token and token.startswith("Bearer "):
            token = token[7:]

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_access_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No recognized role assigned",
        )

    return Principal(id=str(subject), role=role)


def require_permission(required_permissions: List[Permission]):
    """
    Require specific permissions.

    Usage:
        @router.post("/proofs")
        async def upload(
            principal: Principal = Depends(require_permission([Permission.UPLOAD_PROOFS]))
        ):
            ...
    """
    async def permission_checker(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        missing_permissions = [p.value for p in required_permissions if not principal.can(p)]
        if missing_permissions:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Missing permissions: {missing_permissions}",
            )
        return principal

    return permission_checker


# ===========================================
# REQUEST CONTEXT
# ===========================================

def get_request_origin(request: Request) -> RequestOrigin:
    """Client IP (honouring X-Forwarded-For) and user agent."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return RequestOrigin(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


# ===========================================
# SERVICES
# ===========================================

def get_audit_recorder() -> AuditRecorder:
    return audit_recorder


def get_signer() -> CertificateSigner:
    return get_certificate_signer()


def get_proof_service(
    db: AsyncSession = Depends(get_async_session),
    recorder: AuditRecorder = Depends(get_audit_recorder),
) -> ProofService:
    return ProofService(db, recorder)


def get_certificate_service(
    db: AsyncSession = Depends(get_async_session),
    recorder: AuditRecorder = Depends(get_audit_recorder),
    signer: CertificateSigner = Depends(get_signer),
) -> CertificateService:
    return CertificateService(db, recorder, signer)


def get_verification_service(
    db: AsyncSession = Depends(get_async_session),
    recorder: AuditRecorder = Depends(get_audit_recorder),
) -> VerificationService:
    return VerificationService(db, recorder)
