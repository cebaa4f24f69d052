"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from home_services.core.config import settings

logger = logging.getLogger(__name__)

_DEFAULT_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 10,
    # Fail fast when the pool is exhausted instead of blocking request threads
    "pool_timeout": 5,
    "pool_recycle": 300,
    "pool_pre_ping": True,
    "pool_use_lifo": True,
}


class Base(DeclarativeBase):
    """Declarative base for all ledger models."""


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    if db_url.lower().startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    kwargs = dict(_DEFAULT_POOL_KWARGS)
    kwargs["connect_args"] = {"options": f"-c statement_timeout={settings.db_statement_timeout_ms}"}
    return kwargs


def create_ledger_engine(db_url: str | None = None) -> Engine:
    """Create an engine for the ledger store."""
    url = db_url or settings.database_url
    ledger_engine = create_engine(url, future=True, **_build_engine_kwargs(url))

    @event.listens_for(ledger_engine, "connect")
    def _on_connect(_dbapi_connection: Any, _connection_record: Any) -> None:
        logger.debug("Database connection established")

    return ledger_engine


engine: Engine = create_ledger_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Context manager for short-lived DB operations (tasks, scripts)."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


__all__ = [
    "Base",
    "SessionLocal",
    "create_ledger_engine",
    "engine",
    "get_db_session",
]
