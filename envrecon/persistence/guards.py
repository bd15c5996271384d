from __future__ import annotations

import logging
from typing import NoReturn

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from envrecon.core.errors import ConflictError, PersistenceError


logger = logging.getLogger(__name__)

# Driver messages for unique violations differ between asyncpg and sqlite.
_UNIQUE_MARKERS = ("unique", "duplicate key")


def is_unique_violation(exc: IntegrityError) -> bool:
    sqlstate = getattr(getattr(exc, "orig", None), "sqlstate", None)
    if sqlstate == "23505":
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _UNIQUE_MARKERS)


def raise_store_error(
    exc: SQLAlchemyError,
    *,
    operation: str,
    conflict_message: str | None = None,
    **scope: object,
) -> NoReturn:
    # Unique violations become domain conflicts; everything else is logged and made opaque.
    if conflict_message is not None and isinstance(exc, IntegrityError) and is_unique_violation(exc):
        raise ConflictError(conflict_message) from exc
    context = " ".join(f"{key}={value}" for key, value in scope.items())
    logger.error("store_operation_failed operation=%s %s", operation, context, exc_info=exc)
    raise PersistenceError(f"{operation} failed") from exc
