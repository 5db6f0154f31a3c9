"""Database configuration for the analytics event store."""
from __future__ import annotations

import os
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

DATABASE_URL = os.environ.get("ANALYTICS_DATABASE_URL", "sqlite:///./analytics.db")

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
    future=True,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@contextmanager
def session_scope(factory=SessionLocal):
    """Provide a transactional scope for database operations.

    ``factory`` is the sessionmaker to open the session from. It defaults to
    the module-level ``SessionLocal``; sinks pass their own so tests and
    embedded callers can point at a separate database.
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
