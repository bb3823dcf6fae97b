from __future__ import annotations

import logging
import os
from typing import Callable, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from .errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./test.db")

if DATABASE_URL.startswith("sqlite"):
    sqlite_args = {"check_same_thread": False, "timeout": 30}
else:
    sqlite_args = {}

engine = create_engine(DATABASE_URL, connect_args=sqlite_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

T = TypeVar("T")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _is_number_collision(exc: IntegrityError) -> bool:
    # unique violation on a generated TEST-/NC- number column
    message = str(exc.orig).lower()
    return "number" in message and ("unique" in message or "duplicate" in message)


def run_atomic(db: Session, operation: Callable[[bool], T]) -> T:
    """Run ``operation`` as one transaction, retrying once on a version conflict
    or on a generated record number already taken by a concurrent commit.

    ``operation`` receives ``True`` on the retry so it can tell a lost race
    apart from a plain invalid request.
    """

    for attempt in range(2):
        retried = attempt > 0
        try:
            result = operation(retried)
            db.commit()
            return result
        except StaleDataError as exc:
            db.rollback()
            if retried:
                raise ConcurrencyConflict("record was modified by a concurrent request") from exc
            logger.warning("version conflict detected, retrying once: %s", exc)
        except IntegrityError as exc:
            db.rollback()
            if not _is_number_collision(exc):
                raise
            if retried:
                raise ConcurrencyConflict("record number was taken by a concurrent request") from exc
            logger.warning("record number collision detected, retrying once: %s", exc)
        except Exception:
            db.rollback()
            raise
    raise ConcurrencyConflict("record was modified by a concurrent request")
