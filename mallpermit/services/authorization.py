"""
Role table for work permit operations.

Every mutating engine operation is checked against REQUIRED_ROLES before any
record is loaded or changed. Read operations are open to every role.
"""
from typing import Dict, FrozenSet, Optional

from mallpermit.models.enums import PermitOperation, Role

_ANY_PERMIT_USER = frozenset({Role.TENANT_USER, Role.MALL_MANAGER, Role.ADMIN})
_MALL_STAFF = frozenset({Role.MALL_MANAGER, Role.ADMIN})

REQUIRED_ROLES: Dict[PermitOperation, FrozenSet[Role]] = {
    PermitOperation.CREATE: _ANY_PERMIT_USER,
    PermitOperation.UPDATE: _ANY_PERMIT_USER,
    PermitOperation.APPROVE: _MALL_STAFF,
    PermitOperation.REJECT: _MALL_STAFF,
    PermitOperation.ACTIVATE: _MALL_STAFF,
    PermitOperation.COMPLETE: _ANY_PERMIT_USER,
    PermitOperation.CANCEL: _ANY_PERMIT_USER,
    PermitOperation.ADD_INSPECTION: _MALL_STAFF,
    PermitOperation.ADD_INCIDENT: _ANY_PERMIT_USER,
    PermitOperation.DELETE: frozenset({Role.ADMIN}),
}


class RoleGuard:
    """Answers whether a role may perform an operation."""

    def __init__(self, table: Optional[Dict[PermitOperation, FrozenSet[Role]]] = None):
        self.table = table if table is not None else REQUIRED_ROLES

    def allows(self, role, operation: PermitOperation) -> bool:
        try:
            role = Role(role)
        except ValueError:
            return False
        return role in self.table.get(operation, frozenset())
