"""Database error translation and degradable sections for read queries.

The engine never retries: a failed or timed-out query surfaces as a domain
error (QueryExecutionFailure or UpstreamTimeout) and retries, if any, are
the caller's responsibility.
"""

import functools
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, ParamSpec, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError, TimeoutError as PoolTimeoutError
from sqlmodel import Session

from app.core.errors import ErrorHandler
from app.core.exceptions import QueryExecutionFailure, UpstreamTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = ParamSpec("P")

# Errors that mean the database did not answer within budget
TIMEOUT_ERRORS = (
    "canceling statement due to statement timeout",
    "statement timeout",
    "timeout expired",
    "connection timed out",
    "could not receive data from server: operation timed out",
    "lock timeout",
)

SLOW_QUERY_THRESHOLD_SECONDS = 0.5


def is_timeout_error(error: BaseException) -> bool:
    """Check if an error means the persistence layer ran out of time."""
    if isinstance(error, PoolTimeoutError):
        return True
    error_msg = str(error).lower()
    return any(msg in error_msg for msg in TIMEOUT_ERRORS)


@contextmanager
def translate_db_errors(operation: str, **context: Any) -> Iterator[None]:
    """
    Translate SQLAlchemy errors raised inside the block into domain errors.

    Usage:
        with translate_db_errors("items_page", contract=contract):
            rows = session.execute(query).all()
    """
    try:
        yield
    except SQLAlchemyError as e:
        if is_timeout_error(e):
            logger.error(f"[DB] {operation} timed out: {e}")
            raise UpstreamTimeout(f"{operation} timed out", operation=operation, **context) from e
        logger.error(f"[DB] {operation} failed: {e}")
        raise QueryExecutionFailure(f"{operation} failed", operation=operation, **context) from e


@contextmanager
def degradable(session: Session, operation: str, **context: Any) -> Iterator[ErrorHandler]:
    """
    Run an optional read in a SAVEPOINT; a failure is reported and suppressed.

    Postgres aborts the whole transaction after a failed statement. Rolling
    back to the savepoint keeps the session usable for the reads that follow
    (the item page after a failed floor figure).

    Usage:
        with degradable(session, "collection_floor", contract=contract) as handler:
            floor = stats.floor_price(collection, currency)
    """
    with ErrorHandler(operation, context=context) as handler:
        with session.begin_nested():
            yield handler


def db_operation(operation: str) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Decorator form of translate_db_errors that also logs slow calls.

    Args:
        operation: Name used in logs and in the raised domain error
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start = time.perf_counter()
            with translate_db_errors(operation):
                result = func(*args, **kwargs)
            elapsed = time.perf_counter() - start
            if elapsed > SLOW_QUERY_THRESHOLD_SECONDS:
                logger.warning(f"SLOW QUERY [{operation}]: {elapsed:.2f}s")
            return result

        return wrapper

    return decorator


def check_db_connection(engine) -> bool:  # type: ignore[type-arg]
    """
    Check if database connection is healthy.
    Returns True if connection is good, False otherwise.
    """
    try:
        with Session(engine) as session:
            session.execute(text("SELECT 1"))
            return True
    except SQLAlchemyError as e:
        logger.error(f"[DB Health] Connection check failed: {e}")
        return False
