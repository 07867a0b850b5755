"""Database models and demo data for the reporting engine."""

from reportql.db.base import Base, get_database_url, get_engine

__all__ = ["Base", "get_database_url", "get_engine"]
