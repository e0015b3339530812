"""
VIPER Erasure Ledger - Test Configuration

Pytest fixtures and configuration.
"""

import hashlib
from datetime import timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.database import Base, get_async_session
from app.dependencies import get_audit_recorder, get_signer
from app.models.base import utcnow
from app.models.proof import DeviceType, ProofStatus, WipingMethod
from app.schemas.certificate import CertificateCreate, IssuedTo
from app.schemas.proof import ProofCreate
from app.services.audit_service import AuditRecorder
from app.services.certificate_service import CertificateService
from app.services.proof_service import ProofService
from app.utils.security import create_access_token
from app.utils.signing import CertificateSigner, generate_key_pair
from main import app


OPERATOR_ID = "operator-1"
OTHER_OPERATOR_ID = "operator-2"
AUDITOR_ID = "auditor-1"
ADMIN_ID = "admin-1"


# ===========================================
# DATABASE FIXTURES
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Fresh SQLite file database per test."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def recorder(session_factory) -> AsyncGenerator[AuditRecorder, None]:
    """Audit recorder writing into the test database."""
    test_recorder = AuditRecorder(session_factory)
    yield test_recorder
    await test_recorder.drain()


@pytest.fixture(scope="session")
def signer() -> CertificateSigner:
    return CertificateSigner(generate_key_pair(2048))


# ===========================================
# SERVICE FIXTURES
# ===========================================

@pytest.fixture
def proof_service(db_session, recorder) -> ProofService:
    return ProofService(db_session, recorder)


@pytest.fixture
def certificate_service(db_session, recorder, signer) -> CertificateService:
    return CertificateService(db_session, recorder, signer)


# ===========================================
# DATA HELPERS
# ===========================================

def make_proof_data(device_id: str, **overrides) -> ProofCreate:
    start = utcnow() - timedelta(hours=2)
    data = {
        "device_id": device_id,
        "device_type": DeviceType.LAPTOP,
        "device_model": "ThinkPad T14",
        "serial_number": f"SN-{device_id}",
        "wiping_method": WipingMethod.NIST_800_88,
        "wiping_passes": 3,
        "wiping_start": start,
        "wiping_end": start + timedelta(minutes=45),
        "file_path": f"proofs/{device_id}.pdf",
        "file_name": f"{device_id}.pdf",
        "file_size": 2048,
        "mime_type": "application/pdf",
        "file_hash": hashlib.sha256(device_id.encode()).hexdigest(),
        "compliance_standards": [
            {"standard": "NIST", "compliant": True},
            {"standard": "GDPR", "compliant": True},
        ],
    }
    data.update(overrides)
    return ProofCreate(**data)


def make_certificate_data(proof_ids, **overrides) -> CertificateCreate:
    data = {
        "proof_ids": list(proof_ids),
        "title": "Data Erasure Certificate",
        "issued_to": IssuedTo(organization="Acme Corp", contact_person="Jane Roe", email="jane@acme.com"),
        "compliance_standards": [
            {"standard": "NIST SP 800-88", "compliant": True},
            {"standard": "GDPR", "compliant": True},
        ],
    }
    data.update(overrides)
    return CertificateCreate(**data)


async def create_verified_proof(service: ProofService, device_id: str, owner: str = OPERATOR_ID):
    proof = await service.create_proof(make_proof_data(device_id), uploaded_by=owner)
    return await service.transition_status(proof.id, ProofStatus.VERIFIED, actor=AUDITOR_ID)


# ===========================================
# API FIXTURES
# ===========================================

def auth_headers(subject: str, role: str) -> dict:
    token = create_access_token({"sub": subject, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def operator_headers() -> dict:
    return auth_headers(OPERATOR_ID, "operator")


@pytest.fixture
def other_operator_headers() -> dict:
    return auth_headers(OTHER_OPERATOR_ID, "operator")


@pytest.fixture
def auditor_headers() -> dict:
    return auth_headers(AUDITOR_ID, "auditor")


@pytest.fixture
def admin_headers() -> dict:
    return auth_headers(ADMIN_ID, "admin")


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, recorder, signer) -> AsyncGenerator[AsyncClient, None]:
    """Test client bound to the test database, recorder and signer."""

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_session
    app.dependency_overrides[get_audit_recorder] = lambda: recorder
    app.dependency_overrides[get_signer] = lambda: signer

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
