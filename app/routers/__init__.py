"""
VIPER Erasure Ledger - Routers Package

FastAPI route handlers.

Routers:
- proofs: Erasure proof upload and lifecycle
- certificates: Certificate generation, issue, revocation and export
- verification: Public verification by code (no authentication)
- audit: Audit trail queries, statistics, export and retention
"""

from app.routers import (
    proofs,
    certificates,
    verification,
    audit,
)

__all__ = [
    "proofs",
    "certificates",
    "verification",
    "audit",
]
