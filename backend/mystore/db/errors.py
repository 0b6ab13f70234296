"""Translation of SQLAlchemy failures into service errors."""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import exc as sa_exc

from mystore.core.errors import ErrorKind, ServiceError

logger = logging.getLogger(__name__)

_UNIQUE_SQLSTATE = "23505"
_UNIQUE_MARKERS = ("unique constraint", "duplicate key", "unique violation")


def _is_unique_violation(error: sa_exc.IntegrityError) -> bool:
    orig = error.orig
    if getattr(orig, "sqlstate", None) == _UNIQUE_SQLSTATE or getattr(orig, "pgcode", None) == _UNIQUE_SQLSTATE:
        return True
    text = str(orig).lower()
    return any(marker in text for marker in _UNIQUE_MARKERS)


def classify_storage_error(error: sa_exc.SQLAlchemyError) -> ErrorKind:
    if isinstance(error, sa_exc.IntegrityError):
        return ErrorKind.CONFLICT if _is_unique_violation(error) else ErrorKind.VALIDATION
    if isinstance(error, sa_exc.DataError):
        return ErrorKind.VALIDATION
    if isinstance(error, sa_exc.StatementError) and isinstance(error.orig, (ValueError, LookupError)):
        return ErrorKind.VALIDATION
    if isinstance(error, (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.DisconnectionError, sa_exc.TimeoutError)):
        return ErrorKind.TRANSIENT_STORAGE
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return ErrorKind.TRANSIENT_STORAGE
    return ErrorKind.INTERNAL


_MESSAGES = {
    ErrorKind.VALIDATION: "Invalid {subject} data",
    ErrorKind.TRANSIENT_STORAGE: "Database error while {action}",
    ErrorKind.INTERNAL: "Failed {action}",
}


@contextmanager
def storage_errors(action: str, *, subject: str = "user", conflict_message: str = "Email already exists") -> Iterator[None]:
    """Re-raise storage failures inside the block as ``ServiceError``.

    ``ServiceError`` raised inside the block passes through untouched.
    """
    try:
        yield
    except sa_exc.SQLAlchemyError as exc:
        kind = classify_storage_error(exc)
        logger.warning("Storage failure while %s (%s): %s", action, kind.value, exc.__class__.__name__)
        if kind is ErrorKind.CONFLICT:
            message = conflict_message
        else:
            message = _MESSAGES[kind].format(subject=subject, action=action)
        raise ServiceError(kind, message, diagnostics={"error": str(exc.orig) if hasattr(exc, "orig") else str(exc)}) from exc
