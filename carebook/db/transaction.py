import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from carebook.config.settings import settings
from carebook.core.errors import ConcurrentModificationError, TransactionError
from carebook.core.observability import (
    TransactionContext,
    TransactionObserver,
    default_observer,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL serialization_failure and deadlock_detected
WRITE_CONFLICT_SQLSTATES = {"40001", "40P01"}


def is_write_conflict(exc: BaseException) -> bool:
    """True when `exc` means a concurrent writer won and the attempt can be replayed."""
    if isinstance(exc, ConcurrentModificationError):
        return True
    if not isinstance(exc, DBAPIError):
        return False

    orig = exc.orig
    # asyncpg errors arrive wrapped by the SQLAlchemy adapter; check both layers
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code in WRITE_CONFLICT_SQLSTATES:
            return True

    if isinstance(exc, OperationalError) and "database is locked" in str(orig).lower():
        return True
    return False


async def run_in_transaction(
    session_factory: Callable[[], AsyncSession],
    attempt: Callable[[AsyncSession], Awaitable[T]],
    *,
    tx: TransactionContext,
    observer: TransactionObserver = default_observer,
    max_attempts: Optional[int] = None,
    summarize: Optional[Callable[[T], Dict[str, Any]]] = None,
) -> T:
    """
    Run `attempt` inside one database transaction, replaying it on write conflicts.

    Every attempt gets a fresh session, so `attempt` must re-read whatever state
    it depends on. Commit and rollback happen here only; business errors raised
    by `attempt` roll the transaction back and propagate unchanged.

    Args:
        session_factory: Factory producing AsyncSession objects.
        attempt: Coroutine function doing the transactional work.
        tx: Context describing the operation, reported to the observer.
        observer: Receives start/retry/success/error events.
        max_attempts: Upper bound on attempts (defaults to settings).
        summarize: Optional projection of the result for the success event.

    Returns:
        Whatever `attempt` returned on the committed attempt.

    Raises:
        TransactionError: If every attempt ended in a write conflict.
    """
    limit = max_attempts or settings.transaction_max_attempts
    observer.started(tx)
    last_conflict: Optional[BaseException] = None

    while tx.attempts < limit:
        tx.attempts += 1
        try:
            async with session_factory() as session:
                async with session.begin():
                    result = await attempt(session)
        except Exception as exc:
            if is_write_conflict(exc):
                last_conflict = exc
                if tx.attempts < limit:
                    observer.retrying(tx, exc)
                continue
            observer.failed(tx, exc)
            raise

        observer.succeeded(tx, summarize(result) if summarize else None)
        return result

    error = TransactionError(
        f"{tx.operation} failed after multiple attempts",
        {"attempts": tx.attempts},
    )
    observer.failed(tx, error)
    raise error from last_conflict
