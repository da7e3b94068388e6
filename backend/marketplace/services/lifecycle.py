"""Atomic runner shared by every business action.

An operation is an async callable that loads, authorizes, guards and
mutates inside the session. ``run_atomic`` commits it as one
transaction, translates store-level failures into marketplace errors and
retries exactly once when the store aborted the transaction because of a
concurrent modification.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from marketplace.services.errors import ConflictError, MarketplaceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})
_MAX_ATTEMPTS = 2


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    for attr in ("sqlstate", "pgcode"):
        code = getattr(orig, attr, None)
        if code:
            return code
    return None


def is_concurrent_abort(exc: BaseException) -> bool:
    """True for a transaction aborted only because another one won a race."""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError) and not isinstance(exc, IntegrityError):
        return _sqlstate(exc) in _RETRYABLE_SQLSTATES
    return False


async def run_atomic(
    db: AsyncSession,
    operation: Callable[[AsyncSession], Awaitable[T]],
    *,
    name: str = "operation",
) -> T:
    for attempt in range(1, _MAX_ATTEMPTS + 1):
        try:
            result = await operation(db)
            await db.commit()
            return result
        except MarketplaceError:
            await db.rollback()
            raise
        except IntegrityError as exc:
            await db.rollback()
            logger.info("%s rejected by a uniqueness constraint: %s", name, exc.orig)
            raise ConflictError("The record already exists or was created concurrently") from exc
        except (StaleDataError, DBAPIError) as exc:
            await db.rollback()
            if not is_concurrent_abort(exc):
                raise
            if attempt == _MAX_ATTEMPTS:
                logger.warning("%s aborted by concurrent modification, giving up", name)
                raise ConflictError(
                    "The record was modified concurrently, please retry"
                ) from exc
            logger.warning(
                "%s aborted by concurrent modification, retrying",
                name,
                extra={"attempt": attempt},
            )
        except BaseException:
            await db.rollback()
            raise
    raise AssertionError("unreachable")


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
