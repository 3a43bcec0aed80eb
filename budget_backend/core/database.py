"""
Engine and session factory for the budget store

The URL comes from ``BUDGET_DATABASE_URL`` (SQLite file next to the package by
default). Sessions never autoflush: the budget services flush explicitly before
the queries that have to see their pending rows.
"""

from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase, declared_attr

from .config import settings


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


class Base(DeclarativeBase):
    # Table names are the lower-cased model names (budgetmonth, budgetcategory, ...)
    @declared_attr.directive
    def __tablename__(cls) -> str:  # type: ignore[override]
        return cls.__name__.lower()


engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if is_sqlite(settings.DATABASE_URL) else {},
    pool_pre_ping=not is_sqlite(settings.DATABASE_URL),
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Request-scoped session; services commit through their unit of work."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


if is_sqlite(settings.DATABASE_URL):
    # Cascades on budget groups and entries rely on SQLite enforcing foreign keys
    @event.listens_for(engine, "connect")
    def _configure_sqlite(dbapi_connection, connection_record):  # type: ignore[override]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()
