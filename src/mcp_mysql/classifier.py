"""Leading-keyword classification of raw SQL.

Only the first word is inspected. Authorization and cache eligibility are
separate decisions and keep separate keyword tables even though they overlap.
"""

from __future__ import annotations

import re

from mcp_mysql.permissions import PermissionClass

_KEYWORD = re.compile(r"[a-z]+")

_PERMISSION_KEYWORDS: dict[str, PermissionClass] = {
    "select": PermissionClass.SELECT,
    "insert": PermissionClass.INSERT,
    "update": PermissionClass.UPDATE,
    "delete": PermissionClass.DELETE,
    "show": PermissionClass.SHOW,
    "describe": PermissionClass.DESCRIBE,
    "desc": PermissionClass.DESCRIBE,
}

_CACHEABLE_KEYWORDS = frozenset({"select", "show", "describe", "desc"})


def leading_keyword(sql: str) -> str:
    match = _KEYWORD.match(sql.lstrip().casefold())
    return match.group(0) if match else ""


def classify(sql: str) -> PermissionClass:
    """Map a raw query to the permission class it needs.

    Unrecognized statements (``ALTER``, ``CREATE``, ``GRANT``, comments,
    empty input) fall back to ``SELECT``. This lets DDL through for any role
    that may read and is kept for compatibility; see ``is_recognized``.
    """
    return _PERMISSION_KEYWORDS.get(leading_keyword(sql), PermissionClass.SELECT)


def is_recognized(sql: str) -> bool:
    return leading_keyword(sql) in _PERMISSION_KEYWORDS


def should_cache(sql: str) -> bool:
    return leading_keyword(sql) in _CACHEABLE_KEYWORDS
