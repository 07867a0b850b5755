"""Session management for database access."""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from reportql.db.base import get_engine

# Bound per call so importing this module never opens a connection pool
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def create_session(engine: Engine | None = None) -> Session:
    """Open a session on the given engine, or on the configured database."""

    return SessionLocal(bind=engine or get_engine())
