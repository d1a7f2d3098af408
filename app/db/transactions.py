"""Serializable transactions with bounded retry on write conflicts."""

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.core.errors import TransactionConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03"}

_RETRYABLE_MESSAGES = (
    "could not serialize access",
    "deadlock detected",
    "database is locked",
)


def is_serialization_failure(exc: BaseException) -> bool:
    """True when the database rejected the transaction because of a
    concurrent writer or lock contention, so running it again may succeed."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    # psycopg 3 exposes sqlstate, psycopg2 pgcode
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in RETRYABLE_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(fragment in message for fragment in _RETRYABLE_MESSAGES)


def backoff_delay(attempt: int, base: float) -> float:
    """Delay before the retry that follows ``attempt`` (1-based): base, 2*base, 4*base..."""
    return base * (2 ** (attempt - 1))


def apply_timeouts(session: Session, lock_timeout_ms: int, statement_timeout_ms: int) -> None:
    # SET LOCAL only lasts until the end of the current transaction
    if session.get_bind().dialect.name != "postgresql":
        return
    session.execute(text(f"SET LOCAL lock_timeout = {int(lock_timeout_ms)}"))
    session.execute(text(f"SET LOCAL statement_timeout = {int(statement_timeout_ms)}"))


def run_serializable(
    session_factory: sessionmaker,
    work: Callable[[Session], T],
    *,
    max_attempts: int = settings.SETTLEMENT_MAX_ATTEMPTS,
    backoff_base: float = settings.SETTLEMENT_BACKOFF_BASE_SECONDS,
    lock_timeout_ms: int = settings.SETTLEMENT_LOCK_TIMEOUT_MS,
    statement_timeout_ms: int = settings.SETTLEMENT_STATEMENT_TIMEOUT_MS,
    is_retryable: Callable[[BaseException], bool] = is_serialization_failure,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "transaction",
) -> T:
    """Run ``work(session)`` in its own transaction, committing on return.

    ``session_factory`` must hand out sessions bound at SERIALIZABLE isolation.
    Every attempt starts from a fresh session, so nothing read or written by a
    failed attempt leaks into the next one. Retryable failures are attempted
    ``max_attempts`` times in total, then surface as ``TransactionConflict``.
    Any other exception propagates on the first occurrence.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            with session_factory() as session:
                with session.begin():
                    apply_timeouts(session, lock_timeout_ms, statement_timeout_ms)
                    return work(session)
        except DBAPIError as exc:
            if not is_retryable(exc):
                raise
            if attempt >= max_attempts:
                logger.warning(
                    "%s gave up after %d conflicting attempts: %s", label, attempt, exc.orig
                )
                raise TransactionConflict() from exc
            delay = backoff_delay(attempt, backoff_base)
            logger.warning(
                "%s conflict on attempt %d/%d, retrying in %.0f ms",
                label, attempt, max_attempts, delay * 1000,
            )
            sleep(delay)
