"""
VIPER Erasure Ledger - Permissions System

RBAC permissions for the roles supplied by the identity provider.

Permission Matrix:
==================

| Permission                    | Admin | Auditor | Operator |
|-------------------------------|-------|---------|----------|
| upload_proofs                 | X     |         | X        |
| view_proofs                   | X     | X       | X        |
| edit_proofs                   | X     |         | X        |
| transition_proofs             | X     | X       |          |
| delete_proofs                 | X     |         | X        |
| generate_certificates         | X     |         | X        |
| issue_certificates            | X     | X       |          |
| revoke_certificates           | X     | X       |          |
| view_certificates             | X     | X       | X        |
| view_all_resources            | X     | X       |          |
| view_audit_logs               | X     | X       |          |
| export_audit_logs             | X     | X       |          |
| manage_audit_retention        | X     |         |          |

Operators only see and act on proofs and certificates they own.
"""

from enum import Enum
from typing import Set


# ===========================================
# ROLE & PERMISSION ENUMS
# ===========================================

class Role(str, Enum):
    ADMIN = "admin"
    AUDITOR = "auditor"
    OPERATOR = "operator"


class Permission(str, Enum):
    """Permissions checked by the API layer."""

    # Proofs
    UPLOAD_PROOFS = "upload_proofs"
    VIEW_PROOFS = "view_proofs"
    EDIT_PROOFS = "edit_proofs"
    TRANSITION_PROOFS = "transition_proofs"
    DELETE_PROOFS = "delete_proofs"

    # Certificates
    GENERATE_CERTIFICATES = "generate_certificates"
    ISSUE_CERTIFICATES = "issue_certificates"
    REVOKE_CERTIFICATES = "revoke_certificates"
    VIEW_CERTIFICATES = "view_certificates"

    # Cross-owner visibility
    VIEW_ALL_RESOURCES = "view_all_resources"

    # Audit
    VIEW_AUDIT_LOGS = "view_audit_logs"
    EXPORT_AUDIT_LOGS = "export_audit_logs"
    MANAGE_AUDIT_RETENTION = "manage_audit_retention"


# ===========================================
# PERMISSION MAPPINGS
# ===========================================

ROLE_PERMISSIONS: dict[Role, Set[Permission]] = {
    Role.ADMIN: set(Permission),
    Role.AUDITOR: {
        Permission.VIEW_PROOFS,
        Permission.TRANSITION_PROOFS,
        Permission.ISSUE_CERTIFICATES,
        Permission.REVOKE_CERTIFICATES,
        Permission.VIEW_CERTIFICATES,
        Permission.VIEW_ALL_RESOURCES,
        Permission.VIEW_AUDIT_LOGS,
        Permission.EXPORT_AUDIT_LOGS,
    },
    Role.OPERATOR: {
        Permission.UPLOAD_PROOFS,
        Permission.VIEW_PROOFS,
        Permission.EDIT_PROOFS,
        Permission.DELETE_PROOFS,
        Permission.GENERATE_CERTIFICATES,
        Permission.VIEW_CERTIFICATES,
    },
}


# ===========================================
# PERMISSION HELPER FUNCTIONS
# ===========================================

def get_permissions(role: Role) -> Set[Permission]:
    """Get all permissions for a role."""
    return ROLE_PERMISSIONS.get(role, set())


def has_permission(role: Role, permission: Permission) -> bool:
    """Check if a role has a specific permission."""
    return permission in get_permissions(role)
