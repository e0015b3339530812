"""
VIPER Erasure Ledger - Background Tasks Package

Periodic lifecycle and retention sweeps.
"""

from app.tasks.scheduled_tasks import (
    expire_certificates,
    expire_proofs,
    archive_audit_logs,
    anonymize_audit_logs,
    TaskRunner,
)

__all__ = [
    "expire_certificates",
    "expire_proofs",
    "archive_audit_logs",
    "anonymize_audit_logs",
    "TaskRunner",
]
