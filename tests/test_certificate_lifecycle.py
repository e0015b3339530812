"""
Tests for certificate generation, issue/revoke/expire transitions,
signatures, downloads and the booking of proofs into certificates.
"""

import re
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.models.audit import AuditActionType, AuditCategory, AuditLog, AuditSeverity
from app.models.base import utcnow
from app.models.certificate import Certificate, CertificateStatus, DownloadFormat, RevocationReason
from app.schemas.certificate import CertificateUpdate, ValidityPeriod
from app.services.certificate_service import (
    CertificateService,
    canonical_payload,
    derive_counts,
    generate_certificate_id,
    generate_verification_code,
)
from app.services.proof_service import ProofService
from app.utils.error_handling import (
    AuthorizationException,
    BusinessRuleException,
    ErrorCode,
    InvalidTransitionException,
    ProofAlreadyBookedException,
    ProofNotFoundException,
    ProofNotVerifiedException,
    ReservationConflictException,
    ValidationException,
    VersionConflictException,
)
from app.utils.signing import SIGNATURE_ALGORITHM, verify

from conftest import (
    ADMIN_ID,
    AUDITOR_ID,
    OPERATOR_ID,
    OTHER_OPERATOR_ID,
    create_verified_proof,
    make_certificate_data,
    make_proof_data,
)


CERTIFICATE_ID_PATTERN = re.compile(r"^CERT-\d{4}-\d{6}-[0-9A-F]{6}$")


class TestIdentifiers:

    def test_certificate_id_format(self):
        assert CERTIFICATE_ID_PATTERN.match(generate_certificate_id())

    def test_verification_code_format(self):
        code = generate_verification_code()
        assert re.fullmatch(r"[0-9A-F]{32}", code)
        assert code != generate_verification_code()

    def test_derived_counts(self):
        devices = [
            {"status": "verified", "wiping_duration": 100},
            {"status": "verified", "wiping_duration": None},
            {"status": "failed", "wiping_duration": 50},
        ]
        assert derive_counts(devices) == {
            "total_devices": 3,
            "successful_wipes": 2,
            "failed_wipes": 1,
            "total_wiping_duration": 150,
        }


# ===========================================
# GENERATE
# ===========================================

@pytest.mark.asyncio
class TestGenerate:

    async def test_generated_certificate(self, proof_service, certificate_service):
        first = await create_verified_proof(proof_service, "DL-001")
        second = await create_verified_proof(proof_service, "DL-002")

        certificate = await certificate_service.generate(
            make_certificate_data([first.id, second.id]), actor=OPERATOR_ID
        )

        assert certificate.status == CertificateStatus.GENERATED
        assert CERTIFICATE_ID_PATTERN.match(certificate.certificate_id)
        assert len(certificate.verification_code) == 32
        assert certificate.verification_url.endswith(f"/verify/{certificate.verification_code}")
        assert certificate.total_devices == 2
        assert certificate.successful_wipes == 2
        assert certificate.failed_wipes == 0
        assert certificate.total_wiping_duration == 2 * 45 * 60
        assert [d["device_id"] for d in certificate.devices] == ["DL-001", "DL-002"]
        assert certificate.validity_end - certificate.validity_start == timedelta(days=365 * 3)
        assert certificate.signature_algorithm == SIGNATURE_ALGORITHM

    async def test_signature_verifies_after_reload(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        certificate = await certificate_service.generate(make_certificate_data([proof.id]), actor=OPERATOR_ID)

        reloaded = await certificate_service.get_by_certificate_id(certificate.certificate_id)
        assert certificate_service.verify_signature(reloaded)

    async def test_tampered_snapshot_fails_verification(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        certificate = await certificate_service.generate(make_certificate_data([proof.id]), actor=OPERATOR_ID)

        certificate.issued_to = dict(certificate.issued_to, organization="Someone Else Ltd")
        assert certificate_service.verify_signature(certificate) is False

    async def test_proofs_are_booked(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        certificate = await certificate_service.generate(make_certificate_data([proof.id]), actor=OPERATOR_ID)

        assert (await proof_service.get_proof(proof.id)).certificate_id == certificate.id
        assert [p.id for p in await certificate_service.get_proofs(certificate)] == [proof.id]

    async def test_duplicate_ids_collapse(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        certificate = await certificate_service.generate(
            make_certificate_data([proof.id, proof.id]), actor=OPERATOR_ID
        )
        assert certificate.total_devices == 1

    async def test_explicit_validity_period(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        start = utcnow().replace(microsecond=0)
        period = ValidityPeriod(start=start, end=start + timedelta(days=30))
        certificate = await certificate_service.generate(
            make_certificate_data([proof.id], validity_period=period), actor=OPERATOR_ID
        )
        assert certificate.validity_start == start
        assert certificate.validity_end == start + timedelta(days=30)

    async def test_empty_proof_list_rejected(self, certificate_service):
        with pytest.raises(ValidationException):
            await certificate_service.generate(make_certificate_data([]), actor=OPERATOR_ID)

    async def test_unknown_proof_rejected(self, certificate_service):
        with pytest.raises(ProofNotFoundException):
            await certificate_service.generate(make_certificate_data([uuid.uuid4()]), actor=OPERATOR_ID)

    async def test_unverified_proof_rejected(self, proof_service, certificate_service, db_session):
        verified = await create_verified_proof(proof_service, "DL-001")
        pending = await proof_service.create_proof(make_proof_data("DL-002"), uploaded_by=OPERATOR_ID)
        verified_id, pending_id = verified.id, pending.id

        with pytest.raises(ProofNotVerifiedException):
            await certificate_service.generate(
                make_certificate_data([verified_id, pending_id]), actor=OPERATOR_ID
            )

        assert await db_session.scalar(select(func.count(Certificate.id))) == 0
        assert (await proof_service.get_proof(verified_id)).certificate_id is None
        assert (await proof_service.get_proof(pending_id)).certificate_id is None

    async def test_booked_proof_rejected(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        await certificate_service.generate(make_certificate_data([proof.id]), actor=OPERATOR_ID)

        with pytest.raises(ProofAlreadyBookedException):
            await certificate_service.generate(make_certificate_data([proof.id]), actor=OPERATOR_ID)

    async def test_operator_cannot_bundle_foreign_proof(self, proof_service, certificate_service):
        foreign = await create_verified_proof(proof_service, "DL-001", owner=OTHER_OPERATOR_ID)
        with pytest.raises(AuthorizationException):
            await certificate_service.generate(make_certificate_data([foreign.id]), actor=OPERATOR_ID)

    async def test_admin_may_bundle_any_proof(self, proof_service, certificate_service):
        foreign = await create_verified_proof(proof_service, "DL-001", owner=OTHER_OPERATOR_ID)
        certificate = await certificate_service.generate(
            make_certificate_data([foreign.id]), actor=ADMIN_ID, actor_is_admin=True
        )
        assert certificate.generated_by == ADMIN_ID

    async def test_reservation_conflict_rolls_back(
        self, proof_service, certificate_service, session_factory, recorder, db_session, monkeypatch
    ):
        first = await create_verified_proof(proof_service, "DL-001")
        second = await create_verified_proof(proof_service, "DL-002")
        first_id, second_id = first.id, second.id

        original = certificate_service._unique_value
        raced = []

        async def racing_unique_value(column, generator):
            # A concurrent request removes one proof after validation
            if not raced:
                raced.append(column)
                async with session_factory() as other:
                    await ProofService(other, recorder).delete_proof(second_id, actor=OPERATOR_ID)
            return await original(column, generator)

        monkeypatch.setattr(certificate_service, "_unique_value", racing_unique_value)

        with pytest.raises(ReservationConflictException) as exc_info:
            await certificate_service.generate(make_certificate_data([first_id, second_id]), actor=OPERATOR_ID)
        assert exc_info.value.retryable is True

        assert await db_session.scalar(select(func.count(Certificate.id))) == 0
        assert (await proof_service.get_proof(first_id)).certificate_id is None

    async def test_generation_is_audited(self, proof_service, certificate_service, recorder, db_session):
        proof = await create_verified_proof(proof_service, "DL-001")
        certificate = await certificate_service.generate(make_certificate_data([proof.id]), actor=OPERATOR_ID)
        await recorder.drain()

        entry = (await db_session.execute(
            select(AuditLog).where(AuditLog.action_type == AuditActionType.CERTIFICATE_GENERATED)
        )).scalar_one()
        assert entry.resource_id == str(certificate.id)
        assert entry.severity == AuditSeverity.MEDIUM
        assert entry.event_metadata["device_ids"] == ["DL-001"]


# ===========================================
# TRANSITIONS
# ===========================================

@pytest.mark.asyncio
class TestTransitions:

    async def _generated(self, proof_service, certificate_service, device_id="DL-001", **overrides):
        proof = await create_verified_proof(proof_service, device_id)
        return await certificate_service.generate(
            make_certificate_data([proof.id], **overrides), actor=OPERATOR_ID
        )

    async def test_issue(self, proof_service, certificate_service):
        certificate = await self._generated(proof_service, certificate_service)
        issued = await certificate_service.issue(certificate.id, actor=AUDITOR_ID)

        assert issued.status == CertificateStatus.ISSUED
        assert issued.issued_by == AUDITOR_ID
        assert issued.issued_at is not None
        assert issued.version == 2

    async def test_issue_twice_rejected(self, proof_service, certificate_service):
        certificate = await self._generated(proof_service, certificate_service)
        await certificate_service.issue(certificate.id, actor=AUDITOR_ID)
        with pytest.raises(InvalidTransitionException):
            await certificate_service.issue(certificate.id, actor=AUDITOR_ID)

    async def test_revoke_records_reason(self, proof_service, certificate_service):
        certificate = await self._generated(proof_service, certificate_service)
        await certificate_service.issue(certificate.id, actor=AUDITOR_ID)
        revoked = await certificate_service.revoke(certificate.id, "compromised", actor=AUDITOR_ID)

        assert revoked.status == CertificateStatus.REVOKED
        assert revoked.revocation == {
            "reason": "compromised",
            "date": revoked.revocation_date,
            "actor": AUDITOR_ID,
        }

    async def test_generated_certificate_can_be_revoked(self, proof_service, certificate_service):
        certificate = await self._generated(proof_service, certificate_service)
        revoked = await certificate_service.revoke(certificate.id, "superseded", actor=AUDITOR_ID)
        assert revoked.status == CertificateStatus.REVOKED

    async def test_revoked_is_terminal(self, proof_service, certificate_service):
        certificate = await self._generated(proof_service, certificate_service)
        first = await certificate_service.revoke(certificate.id, "superseded", actor=AUDITOR_ID)
        original = (first.revocation_reason, first.revocation_date, first.revoked_by)

        with pytest.raises(InvalidTransitionException):
            await certificate_service.revoke(certificate.id, "compromised", actor=ADMIN_ID)

        reloaded = await certificate_service.get_certificate(certificate.id)
        assert (reloaded.revocation_reason, reloaded.revocation_date, reloaded.revoked_by) == original
        assert reloaded.revocation_reason == RevocationReason.SUPERSEDED
        assert reloaded.revoked_by == AUDITOR_ID

        with pytest.raises(InvalidTransitionException):
            await certificate_service.issue(certificate.id, actor=AUDITOR_ID)

    async def test_unknown_revocation_reason(self, proof_service, certificate_service):
        certificate = await self._generated(proof_service, certificate_service)
        with pytest.raises(ValidationException) as exc_info:
            await certificate_service.revoke(certificate.id, "bored", actor=AUDITOR_ID)
        assert exc_info.value.code == ErrorCode.INVALID_REVOCATION_REASON
        assert (await certificate_service.get_certificate(certificate.id)).status == CertificateStatus.GENERATED

    async def test_revocation_is_a_security_event(self, proof_service, certificate_service, recorder, db_session):
        certificate = await self._generated(proof_service, certificate_service)
        await certificate_service.revoke(certificate.id, "privilege_withdrawn", actor=AUDITOR_ID)
        await recorder.drain()

        entry = (await db_session.execute(
            select(AuditLog).where(AuditLog.action_type == AuditActionType.CERTIFICATE_REVOKED)
        )).scalar_one()
        assert entry.category == AuditCategory.SECURITY
        assert entry.severity == AuditSeverity.HIGH
        assert entry.actor == AUDITOR_ID

    async def test_revoked_certificate_releases_proofs(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        first = await certificate_service.generate(make_certificate_data([proof.id]), actor=OPERATOR_ID)
        await certificate_service.issue(first.id, actor=AUDITOR_ID)
        await certificate_service.revoke(first.id, "superseded", actor=AUDITOR_ID)

        replacement = await certificate_service.generate(make_certificate_data([proof.id]), actor=OPERATOR_ID)
        assert (await proof_service.get_proof(proof.id)).certificate_id == replacement.id

    async def test_stale_read_loses(self, proof_service, certificate_service, session_factory, recorder, signer, monkeypatch):
        certificate = await self._generated(proof_service, certificate_service)

        async with session_factory() as session_b:
            service_b = CertificateService(session_b, recorder, signer)
            stale = await service_b.get_certificate(certificate.id)

            await certificate_service.revoke(certificate.id, "superseded", actor=AUDITOR_ID)

            async def stale_get_certificate(certificate_id):
                return stale

            monkeypatch.setattr(service_b, "get_certificate", stale_get_certificate)
            with pytest.raises(VersionConflictException) as exc_info:
                await service_b.issue(certificate.id, actor="auditor-2")
            assert exc_info.value.retryable is True
            assert exc_info.value.code == ErrorCode.VERSION_CONFLICT

        assert (await certificate_service.get_certificate(certificate.id)).status == CertificateStatus.REVOKED


@pytest.mark.asyncio
class TestExpiry:

    async def _issued(self, proof_service, certificate_service, device_id, days):
        proof = await create_verified_proof(proof_service, device_id)
        start = utcnow() - timedelta(days=1)
        period = ValidityPeriod(start=start, end=start + timedelta(days=days))
        certificate = await certificate_service.generate(
            make_certificate_data([proof.id], validity_period=period), actor=OPERATOR_ID
        )
        return await certificate_service.issue(certificate.id, actor=AUDITOR_ID)

    async def test_recompute_expiry_is_idempotent(self, proof_service, certificate_service):
        certificate = await self._issued(proof_service, certificate_service, "DL-001", days=10)
        later = certificate.validity_end + timedelta(seconds=1)

        assert await certificate_service.recompute_expiry(now=later) == 1
        assert (await certificate_service.get_certificate(certificate.id)).status == CertificateStatus.EXPIRED
        assert await certificate_service.recompute_expiry(now=later) == 0

    async def test_expiry_boundary_is_inclusive(self, proof_service, certificate_service):
        certificate = await self._issued(proof_service, certificate_service, "DL-001", days=10)
        assert await certificate_service.recompute_expiry(now=certificate.validity_end - timedelta(seconds=1)) == 0
        assert await certificate_service.recompute_expiry(now=certificate.validity_end) == 1

    async def test_revoked_certificates_never_expire(self, proof_service, certificate_service):
        certificate = await self._issued(proof_service, certificate_service, "DL-001", days=10)
        await certificate_service.revoke(certificate.id, "superseded", actor=AUDITOR_ID)

        assert await certificate_service.recompute_expiry(now=certificate.validity_end + timedelta(days=1)) == 0
        assert (await certificate_service.get_certificate(certificate.id)).status == CertificateStatus.REVOKED

    async def test_find_expiring(self, proof_service, certificate_service):
        soon = await self._issued(proof_service, certificate_service, "DL-001", days=10)
        await self._issued(proof_service, certificate_service, "DL-002", days=400)

        now = utcnow()
        assert [c.id for c in await certificate_service.find_expiring(days=30, now=now)] == [soon.id]
        assert await certificate_service.find_expiring(days=5, now=now) == []


# ===========================================
# UPDATES, DOWNLOADS, REPORTING
# ===========================================

@pytest.mark.asyncio
class TestDescriptiveOperations:

    async def test_generated_certificate_descriptive_update(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        certificate = await certificate_service.generate(make_certificate_data([proof.id]), actor=OPERATOR_ID)

        updated = await certificate_service.update_certificate(
            certificate.id, CertificateUpdate(title="Q3 Laptop Disposal", tags=["q3"]), actor=OPERATOR_ID
        )
        assert updated.title == "Q3 Laptop Disposal"
        assert updated.tags == ["q3"]
        assert certificate_service.verify_signature(updated)

    async def test_issued_certificate_is_immutable(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        certificate = await certificate_service.generate(make_certificate_data([proof.id]), actor=OPERATOR_ID)
        await certificate_service.issue(certificate.id, actor=AUDITOR_ID)

        with pytest.raises(BusinessRuleException) as exc_info:
            await certificate_service.update_certificate(certificate.id, CertificateUpdate(title="Changed"), actor=OPERATOR_ID)
        assert exc_info.value.code == ErrorCode.CANNOT_MODIFY

    async def test_download_appends_history(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        certificate = await certificate_service.generate(make_certificate_data([proof.id]), actor=OPERATOR_ID)

        projection = await certificate_service.record_download(
            certificate.id, actor=OPERATOR_ID, download_format=DownloadFormat.JSON,
            ip_address="10.0.0.5", user_agent="pytest",
        )
        await certificate_service.record_download(certificate.id, actor=AUDITOR_ID)

        downloads = (await certificate_service.get_certificate(certificate.id)).downloads
        assert [(d.downloaded_by, d.format) for d in downloads] == [
            (OPERATOR_ID, DownloadFormat.JSON),
            (AUDITOR_ID, DownloadFormat.PDF),
        ]
        assert projection["certificate_id"] == certificate.certificate_id

    async def test_export_projection_verifies_offline(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        certificate = await certificate_service.generate(make_certificate_data([proof.id]), actor=OPERATOR_ID)

        projection = certificate_service.export_projection(certificate)
        signature = projection["digital_signature"]
        assert projection["signed_payload"] == canonical_payload(certificate)
        assert verify(projection["signed_payload"], signature["signature"], signature["public_key"])
        assert projection["revocation"] is None

    async def test_check_compliance(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        certificate = await certificate_service.generate(
            make_certificate_data(
                [proof.id],
                compliance_standards=[
                    {"standard": "NIST SP 800-88", "compliant": True},
                    {"standard": "HIPAA", "compliant": False},
                ],
            ),
            actor=OPERATOR_ID,
        )
        assert certificate_service.check_compliance(certificate) == {
            "total": 2,
            "compliant": 1,
            "percentage": 50,
            "is_fully_compliant": False,
        }

    async def test_statistics(self, proof_service, certificate_service):
        first = await create_verified_proof(proof_service, "DL-001")
        second = await create_verified_proof(proof_service, "DL-002")
        issued = await certificate_service.generate(make_certificate_data([first.id]), actor=OPERATOR_ID)
        await certificate_service.issue(issued.id, actor=AUDITOR_ID)
        revoked = await certificate_service.generate(make_certificate_data([second.id]), actor=OPERATOR_ID)
        await certificate_service.revoke(revoked.id, "superseded", actor=AUDITOR_ID)

        stats = await certificate_service.certificate_statistics()
        assert stats["total"] == 2
        assert stats["issued"] == 1
        assert stats["revoked"] == 1
        assert stats["expired"] == 0
        assert stats["total_devices"] == 2

    async def test_list_and_search(self, proof_service, certificate_service):
        proof = await create_verified_proof(proof_service, "DL-001")
        certificate = await certificate_service.generate(
            make_certificate_data([proof.id], title="Datacenter Decommission"), actor=OPERATOR_ID
        )

        items, total = await certificate_service.list_certificates(search="decommission")
        assert total == 1
        assert items[0].id == certificate.id

        items, total = await certificate_service.list_certificates(status=CertificateStatus.ISSUED)
        assert total == 0
