"""
Database engine, session factory and transaction helpers.

Soft-deleted rows are filtered out of every ORM SELECT by a session-level
hook, so callers never repeat an ``is_deleted`` check. Pass
``execution_options(include_deleted=True)`` to see them.
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Boolean, Column, DateTime, create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker, with_loader_criteria

from config import DATABASE_URL, SQL_ECHO
from exceptions import EngineError

logger = logging.getLogger(__name__)

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, echo=SQL_ECHO, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


class SoftDeleteMixin:
    """Rows that are flagged deleted instead of being removed."""

    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


@event.listens_for(Session, "do_orm_execute")
def _exclude_soft_deleted(execute_state):
    if (
        execute_state.is_select
        and not execute_state.is_column_load
        and not execute_state.is_relationship_load
        and not execute_state.execution_options.get("include_deleted", False)
    ):
        execute_state.statement = execute_state.statement.options(
            with_loader_criteria(
                SoftDeleteMixin,
                lambda cls: cls.is_deleted == False,  # noqa: E712
                include_aliases=True,
            )
        )


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all tables (development only; production uses migrations)."""
    import models  # noqa: F401  registers mappers

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


@contextmanager
def transaction(db: Session):
    """
    Run a unit of work and commit it, or roll everything back.

    Business-rule errors raised inside the block happen before any write, so
    the rollback is a no-op for them. Storage errors are re-raised unchanged.
    """
    try:
        yield db
        db.commit()
    except EngineError as e:
        db.rollback()
        logger.info(f"Transaction rolled back: {type(e).__name__}: {e.detail}")
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Transaction rolled back: {type(e).__name__}: {e}")
        raise
