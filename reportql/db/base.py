"""SQLAlchemy base and engine configuration."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase

from reportql.core.config import get_settings


def get_database_url() -> str:
    """Return the configured reporting database URL."""

    return get_settings().database_url


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def get_engine(url: str | None = None, **kwargs) -> Engine:
    """Create a SQLAlchemy engine for the given or configured database."""

    return create_engine(url or get_database_url(), **kwargs)
