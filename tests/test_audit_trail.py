"""
Tests for the audit trail: best-effort recording, immutability,
retention, archival, anonymization and reporting.
"""

import csv
import io
import json
from datetime import timedelta

import pytest

from app.models.audit import (
    ANONYMIZED_DETAILS,
    AuditActionType,
    AuditCategory,
    AuditLog,
    AuditResourceType,
    AuditSeverity,
    AuditStatus,
)
from app.models.base import utcnow
from app.services.audit_service import AuditEvent, AuditRecorder, AuditService
from app.utils.error_handling import BusinessRuleException, ErrorCode, ValidationException


def make_event(**overrides) -> AuditEvent:
    data = {
        "action": "Uploaded proof for device DL-001",
        "action_type": AuditActionType.PROOF_UPLOADED,
        "actor": "operator-1",
        "resource_type": AuditResourceType.PROOF,
        "resource_id": "proof-1",
        "category": AuditCategory.DATA_MODIFICATION,
        "details": "Uploaded from the Lagos depot",
        "user_agent": "Mozilla/5.0",
        "ip_address": "10.0.0.1",
        "metadata": {"file_hash": "ab" * 32},
    }
    data.update(overrides)
    return AuditEvent(**data)


@pytest.fixture
def audit_service(db_session) -> AuditService:
    return AuditService(db_session)


# ===========================================
# RECORDING
# ===========================================

@pytest.mark.asyncio
class TestRecorder:

    async def test_retention_date_fixed_at_creation(self, recorder):
        created = utcnow().replace(microsecond=0)
        entry = await recorder.record(make_event(created_at=created))

        assert entry.retention_date == created + timedelta(days=365 * 7)
        assert entry.is_archived is False
        assert entry.anonymized_at is None

    async def test_submit_returns_immediately_and_drains(self, recorder, audit_service):
        recorder.submit(make_event())
        recorder.submit(make_event(resource_id="proof-2"))
        await recorder.drain()

        assert recorder.pending_count == 0
        logs, total = await audit_service.get_logs()
        assert total == 2

    async def test_write_failure_is_reported_not_raised(self):
        def unavailable_session():
            raise RuntimeError("database unavailable")

        failing = AuditRecorder(unavailable_session)
        assert await failing.record(make_event()) is None

        failing.submit(make_event(resource_id="proof-2"))
        await failing.drain()

        assert [f.event.resource_id for f in failing.failures] == ["proof-1", "proof-2"]
        assert "database unavailable" in failing.failures[0].error


# ===========================================
# IMMUTABILITY
# ===========================================

@pytest.mark.asyncio
class TestImmutability:

    async def test_semantic_fields_cannot_change(self, recorder, db_session):
        entry = await recorder.record(make_event())
        loaded = await db_session.get(AuditLog, entry.id)

        loaded.actor = "someone-else"
        with pytest.raises(BusinessRuleException) as exc_info:
            await db_session.commit()
        assert exc_info.value.code == ErrorCode.CANNOT_MODIFY
        await db_session.rollback()

    async def test_cannot_delete_before_retention(self, recorder, db_session):
        entry = await recorder.record(make_event())
        loaded = await db_session.get(AuditLog, entry.id)

        await db_session.delete(loaded)
        with pytest.raises(BusinessRuleException) as exc_info:
            await db_session.commit()
        assert exc_info.value.code == ErrorCode.CANNOT_DELETE
        await db_session.rollback()

    async def test_pii_fields_locked_until_anonymized(self, recorder, db_session):
        entry = await recorder.record(make_event())
        loaded = await db_session.get(AuditLog, entry.id)

        loaded.details = "edited"
        with pytest.raises(BusinessRuleException):
            await db_session.commit()
        await db_session.rollback()


# ===========================================
# RETENTION
# ===========================================

@pytest.mark.asyncio
class TestArchival:

    async def test_archive_is_idempotent(self, recorder, audit_service):
        now = utcnow()
        await recorder.record(make_event(resource_id="old", created_at=now - timedelta(days=400)))
        await recorder.record(make_event(resource_id="new", created_at=now - timedelta(days=10)))

        assert await audit_service.archive_older_than(365, now=now) == 1
        assert await audit_service.archive_older_than(365, now=now) == 0

        logs, total = await audit_service.get_logs()
        assert [log.resource_id for log in logs] == ["new"]

        logs, total = await audit_service.get_logs(include_archived=True)
        assert total == 2

    async def test_archived_entries_stay_retrievable(self, recorder, audit_service):
        now = utcnow()
        entry = await recorder.record(make_event(created_at=now - timedelta(days=400)))
        await audit_service.archive_older_than(30, now=now)

        history = await audit_service.get_resource_history(AuditResourceType.PROOF, "proof-1")
        assert [log.id for log in history] == [entry.id]
        assert history[0].is_archived is True

    async def test_negative_days_rejected(self, audit_service):
        with pytest.raises(ValidationException):
            await audit_service.archive_older_than(-1)


@pytest.mark.asyncio
class TestAnonymization:

    async def test_anonymize_after_retention(self, recorder, audit_service):
        entry = await recorder.record(make_event(created_at=utcnow() - timedelta(days=365 * 8)))

        anonymized = await audit_service.anonymize(entry.id)

        assert anonymized.anonymized_at is not None
        assert anonymized.details == ANONYMIZED_DETAILS
        assert anonymized.user_agent == "Anonymized"
        assert anonymized.event_metadata == {}
        assert anonymized.action == entry.action
        assert anonymized.actor == entry.actor

    async def test_anonymize_before_retention_refused(self, recorder, audit_service):
        entry = await recorder.record(make_event())
        with pytest.raises(ValidationException) as exc_info:
            await audit_service.anonymize(entry.id)
        assert exc_info.value.code == ErrorCode.RETENTION_NOT_REACHED

    async def test_retention_instant_still_retained(self, recorder, audit_service):
        entry = await recorder.record(make_event(created_at=utcnow() - timedelta(days=365 * 7)))
        retention_date = entry.retention_date

        with pytest.raises(ValidationException) as exc_info:
            await audit_service.anonymize(entry.id, now=retention_date)
        assert exc_info.value.code == ErrorCode.RETENTION_NOT_REACHED
        assert await audit_service.anonymize_expired(now=retention_date) == 0

        anonymized = await audit_service.anonymize(entry.id, now=retention_date + timedelta(microseconds=1))
        assert anonymized.details == ANONYMIZED_DETAILS

    async def test_anonymize_expired_sweep(self, recorder, audit_service):
        now = utcnow()
        await recorder.record(make_event(resource_id="ancient", created_at=now - timedelta(days=365 * 8)))
        await recorder.record(make_event(resource_id="recent", created_at=now - timedelta(days=30)))

        assert await audit_service.anonymize_expired(now=now) == 1
        assert await audit_service.anonymize_expired(now=now) == 0

        ancient = (await audit_service.get_resource_history(AuditResourceType.PROOF, "ancient"))[0]
        recent = (await audit_service.get_resource_history(AuditResourceType.PROOF, "recent"))[0]
        assert ancient.details == ANONYMIZED_DETAILS
        assert recent.details == "Uploaded from the Lagos depot"


# ===========================================
# QUERIES & REPORTING
# ===========================================

@pytest.mark.asyncio
class TestQueries:

    async def test_filters_and_paging(self, recorder, audit_service):
        for index in range(5):
            await recorder.record(make_event(resource_id=f"proof-{index}"))
        await recorder.record(make_event(
            action="Revoked certificate",
            action_type=AuditActionType.CERTIFICATE_REVOKED,
            resource_type=AuditResourceType.CERTIFICATE,
            resource_id="cert-1",
            category=AuditCategory.SECURITY,
            severity=AuditSeverity.HIGH,
        ))

        logs, total = await audit_service.get_logs(skip=0, limit=2, action_type=AuditActionType.PROOF_UPLOADED)
        assert total == 5
        assert len(logs) == 2

        logs, total = await audit_service.get_logs(resource_type=AuditResourceType.CERTIFICATE)
        assert [log.resource_id for log in logs] == ["cert-1"]

    async def test_security_events(self, recorder, audit_service):
        await recorder.record(make_event())
        revoked = await recorder.record(make_event(
            action_type=AuditActionType.CERTIFICATE_REVOKED,
            category=AuditCategory.SECURITY,
            severity=AuditSeverity.HIGH,
        ))

        events = await audit_service.security_events(days=1)
        assert [e.id for e in events] == [revoked.id]

    async def test_statistics_window_and_archival(self, recorder, audit_service):
        now = utcnow()
        await recorder.record(make_event(created_at=now - timedelta(days=2)))
        await recorder.record(make_event(status=AuditStatus.WARNING, created_at=now - timedelta(days=1)))
        await recorder.record(make_event(created_at=now - timedelta(days=90)))
        await audit_service.archive_older_than(0, now=now)

        stats = await audit_service.statistics(window_days=30, now=now)
        assert stats["total"] == 0

        stats = await audit_service.statistics(window_days=30, include_archived=True, now=now)
        assert stats["total"] == 2
        assert stats["warnings"] == 1
        assert stats["by_action_type"] == {"proof_uploaded": 2}
        assert len(stats["daily"]) == 2

    async def test_export_json(self, recorder, audit_service):
        await recorder.record(make_event())
        content, media_type = await audit_service.export_logs("json")

        assert media_type == "application/json"
        records = json.loads(content)
        assert records[0]["action_type"] == "proof_uploaded"
        assert records[0]["metadata"] == {"file_hash": "ab" * 32}

    async def test_export_csv(self, recorder, audit_service):
        await recorder.record(make_event())
        content, media_type = await audit_service.export_logs("csv")

        assert media_type == "text/csv"
        rows = list(csv.DictReader(io.StringIO(content)))
        assert rows[0]["actor"] == "operator-1"
        assert "user_agent" not in rows[0]

    async def test_export_unknown_format(self, audit_service):
        with pytest.raises(ValidationException):
            await audit_service.export_logs("xml")
