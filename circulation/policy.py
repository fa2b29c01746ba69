"""Authorization policy.

A pure lookup of (operation, role) -> allow/deny. Nothing here holds state;
a denied check raises :class:`UnauthorizedError` and that is its only effect.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import FrozenSet, Union

from circulation.errors import UnauthorizedError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ADMIN = "ADMIN"
    ASSISTANT = "ASSISTANT"


class Operation(str, Enum):
    REGISTER_LOAN = "register_loan"
    RETURN_LOAN = "return_loan"
    DELETE_LOAN = "delete_loan"
    VIEW_LOANS = "view_loans"
    CREATE_BOOK = "create_book"
    UPDATE_BOOK = "update_book"
    DELETE_BOOK = "delete_book"
    VIEW_BOOKS = "view_books"


_BOTH = frozenset({Role.ADMIN, Role.ASSISTANT})
_ADMIN_ONLY = frozenset({Role.ADMIN})

PERMISSIONS = {
    Operation.REGISTER_LOAN: _BOTH,
    Operation.RETURN_LOAN: _BOTH,
    Operation.DELETE_LOAN: _ADMIN_ONLY,
    Operation.VIEW_LOANS: _BOTH,
    Operation.CREATE_BOOK: _ADMIN_ONLY,
    Operation.UPDATE_BOOK: _BOTH,
    Operation.DELETE_BOOK: _ADMIN_ONLY,
    Operation.VIEW_BOOKS: _BOTH,
}

BOOK_FIELDS = frozenset({"title", "author", "category", "quantity", "available", "price", "is_active"})

EDITABLE_BOOK_FIELDS = {
    Role.ADMIN: BOOK_FIELDS,
    Role.ASSISTANT: frozenset({"quantity", "available", "price"}),
}


def parse_role(role: Union[Role, str, None]) -> Role:
    """Turn a caller supplied role into a :class:`Role`, or refuse it."""
    if role is None or role == "":
        raise UnauthorizedError("User role is required")
    if isinstance(role, Role):
        return role
    try:
        return Role(str(role).strip().upper())
    except ValueError:
        raise UnauthorizedError(f"Invalid user role: {role}") from None


def authorize(operation: Operation, role: Union[Role, str, None]) -> Role:
    """Raise UnauthorizedError unless ``role`` may perform ``operation``."""
    actor = parse_role(role)
    if actor not in PERMISSIONS[operation]:
        allowed = " or ".join(sorted(r.value for r in PERMISSIONS[operation]))
        raise UnauthorizedError(f"Only {allowed} users can {operation.value.replace('_', ' ')}")
    logger.debug(f"Permission validated for {operation.value} - Role: {actor.value}")
    return actor


def editable_book_fields(role: Union[Role, str, None]) -> FrozenSet[str]:
    return EDITABLE_BOOK_FIELDS[parse_role(role)]


def check_book_fields(role: Union[Role, str, None], fields) -> Role:
    """Refuse an update touching fields outside the role's editable set."""
    actor = parse_role(role)
    denied = sorted(set(fields) - EDITABLE_BOOK_FIELDS[actor])
    if denied:
        raise UnauthorizedError(f"{actor.value} users cannot update: {', '.join(denied)}")
    return actor
