"""
Storage error translation for service methods.

Service methods take the SQLAlchemy session as their first argument. The
decorator below rolls that session back on failure and converts raw
SQLAlchemy errors into StorageError, so callers only ever see the domain
exception taxonomy. Nothing is retried here.
"""

import functools
import logging
from typing import Any, Callable, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import SchedulingError, StorageError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _find_session(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Session | None:
    db = kwargs.get("db")
    if db is None and args and isinstance(args[0], Session):
        db = args[0]
    return db


def storage_guard(func: F) -> F:
    """
    Roll back and translate errors raised by a service method.

    - SchedulingError subclasses are re-raised unchanged after rollback.
    - SQLAlchemyError becomes StorageError (original chained as __cause__).
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except SchedulingError:
            db = _find_session(args, kwargs)
            if db is not None:
                db.rollback()
            raise
        except SQLAlchemyError as e:
            db = _find_session(args, kwargs)
            if db is not None:
                db.rollback()
            logger.exception(f"Storage failure in {getattr(func, '__name__', 'unknown')}: {e}")
            raise StorageError(f"Storage failure: {e.__class__.__name__}") from e

    return cast(F, wrapper)
