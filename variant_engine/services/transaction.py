import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from variant_engine.errors import ConcurrencyError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_MARKERS = (
    "deadlock",
    "could not serialize",
    "serialization failure",
    "database is locked",
    "lock wait timeout",
    "write conflict",
)


def is_transient_db_error(exc: BaseException) -> bool:
    """True for errors worth retrying inside a fresh transaction.

    Duplicate-key violations count as transient: a concurrent request may have
    inserted the same row between our existence check and our insert.
    """
    if isinstance(exc, ValidationError):
        return False
    if isinstance(exc, (ConcurrencyError, IntegrityError)):
        return True
    if isinstance(exc, OperationalError):
        message = str(exc.orig or exc).lower()
        return any(marker in message for marker in _TRANSIENT_MARKERS)
    return False


def with_retryable_transaction(
    session_factory: Callable[[], Session],
    fn: Callable[[Session], T],
    *,
    max_attempts: int = 3,
    is_retryable: Callable[[BaseException], bool] = is_transient_db_error,
    base_delay: float = 0.1,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``fn(session)`` in its own transaction, retrying transient failures.

    Each attempt gets a new session and commits on success; any exception
    rolls the attempt back. Retryable errors wait ``base_delay * 2**attempt``
    before the next attempt. Once ``max_attempts`` is spent a
    ``ConcurrencyError`` is raised from the last error. Anything else
    propagates immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        db = session_factory()
        try:
            result = fn(db)
            db.commit()
            return result
        except Exception as exc:
            db.rollback()
            if not is_retryable(exc):
                raise
            if attempt >= max_attempts:
                logger.error("Transaction failed after %d attempts: %s", attempt, exc)
                raise ConcurrencyError(
                    "The operation conflicted with a concurrent update, please try again"
                ) from exc
            delay = base_delay * (2 ** attempt)
            logger.warning(
                "Transient conflict on attempt %d/%d (%s), retrying in %.2fs",
                attempt, max_attempts, type(exc).__name__, delay,
            )
            sleep(delay)
        finally:
            db.close()
