from __future__ import annotations

from enum import Enum

from mcp_mysql.errors import UnknownOperation


class Role(str, Enum):
    ADMIN = "admin"
    READ_WRITE = "read_write"
    READ_ONLY = "read_only"


class PermissionClass(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    SHOW = "show"
    DESCRIBE = "describe"


ROLE_PERMISSIONS: dict[Role, frozenset[PermissionClass]] = {
    Role.ADMIN: frozenset(PermissionClass),
    Role.READ_WRITE: frozenset(
        {
            PermissionClass.SELECT,
            PermissionClass.INSERT,
            PermissionClass.UPDATE,
            PermissionClass.SHOW,
            PermissionClass.DESCRIBE,
        }
    ),
    Role.READ_ONLY: frozenset(
        {
            PermissionClass.SELECT,
            PermissionClass.SHOW,
            PermissionClass.DESCRIBE,
        }
    ),
}

# Structured operations carry their permission class in their name.
# Raw queries are classified from their text instead (see classifier.py).
OPERATION_PERMISSIONS: dict[str, PermissionClass] = {
    "list_databases": PermissionClass.SHOW,
    "list_tables": PermissionClass.SHOW,
    "describe_table": PermissionClass.DESCRIBE,
    "get_table_data": PermissionClass.SELECT,
    "insert": PermissionClass.INSERT,
    "update": PermissionClass.UPDATE,
    "delete": PermissionClass.DELETE,
}

MUTATING_OPERATIONS = frozenset({"insert", "update", "delete"})


def allows(role: Role, permission: PermissionClass) -> bool:
    """Return whether ``role`` grants ``permission``. Unknown pairs are denied."""
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def permission_for_operation(operation: str) -> PermissionClass:
    try:
        return OPERATION_PERMISSIONS[operation]
    except KeyError:
        raise UnknownOperation(operation) from None
