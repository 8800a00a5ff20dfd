"""Translate SQLAlchemy/driver errors into the pipeline's error taxonomy.

  23505 unique_violation  -> DuplicateKeyError (resolvers recover from it)
  class 22 data exception -> ValidationError   (the value can never be stored)
  anything else           -> StorageFailure    (retryable)
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError

from app.core.errors import DuplicateKeyError, StorageFailure, ValidationError

UNIQUE_VIOLATION = "23505"
DATA_EXCEPTION_CLASS = "22"


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    # asyncpg exposes .sqlstate, psycopg exposes .pgcode / .sqlstate
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


@asynccontextmanager
async def translate_errors(record: str, key: str) -> AsyncIterator[None]:
    try:
        yield
    except DBAPIError as exc:
        sqlstate = _sqlstate(exc) or ""
        if sqlstate == UNIQUE_VIOLATION:
            raise DuplicateKeyError(record, key) from exc
        if sqlstate.startswith(DATA_EXCEPTION_CLASS):
            raise ValidationError(f"{record} value rejected by the store") from exc
        if isinstance(exc, IntegrityError):
            raise StorageFailure(f"{record} write rejected: {exc.orig}") from exc
        raise StorageFailure(f"{record} store unavailable: {exc}") from exc
    except (SQLAlchemyError, OSError) as exc:
        raise StorageFailure(f"{record} store unavailable: {exc}") from exc
