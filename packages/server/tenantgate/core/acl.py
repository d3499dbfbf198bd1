"""
Record-level permission checks.

`can_access` is pure: it sees only the caller's role, the record being
touched (or the parent whose ACL it inherits) and the caller's id.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Optional

from tenantgate.core.roles import has_role
from tenantgate_shared.schemas.common import OrgRole


class Operation(str, Enum):
    LIST = "list"
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"  # hard delete
    BULK = "bulk"
    EDITORS = "editors"  # editor management
    RESTORE = "restore"


_MEMBER_OPERATIONS = {Operation.LIST, Operation.READ, Operation.CREATE}
_ADMIN_OPERATIONS = {Operation.DELETE, Operation.BULK, Operation.EDITORS, Operation.RESTORE}


def editor_ids(resource: Any) -> list[str]:
    return [str(e) for e in (getattr(resource, "editors", None) or [])]


def can_access(
    role: OrgRole,
    operation: Operation,
    resource: Any = None,
    user_id: Optional[uuid.UUID] = None,
    acl: bool = False,
) -> bool:
    if operation in _MEMBER_OPERATIONS:
        return has_role(role, OrgRole.MEMBER)
    if operation in _ADMIN_OPERATIONS:
        return has_role(role, OrgRole.ADMIN)

    # UPDATE
    if has_role(role, OrgRole.ADMIN):
        return True
    if role == OrgRole.NONE or resource is None or user_id is None:
        return False
    if getattr(resource, "user_id", None) == user_id:
        return True
    return acl and str(user_id) in editor_ids(resource)
