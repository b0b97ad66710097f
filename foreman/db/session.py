# session.py — Database engine and session factory
#
# Reads DATABASE_URL from .env:
#   - Not set or empty → sqlite:///foreman.db (local dev)
#   - Set → Postgres connection string (prod)
#
# Usage:
#   from foreman.db.session import get_session, init_db
#   init_db()  # Creates tables if they don't exist
#   with get_session() as session:
#       session.add(...)

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

# Load .env from project root
_env_path = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_env_path)

_DATABASE_URL = os.getenv("DATABASE_URL", "").strip()

if not _DATABASE_URL:
    # Default: SQLite in project root
    _db_path = Path(__file__).resolve().parents[2] / "foreman.db"
    _DATABASE_URL = f"sqlite:///{_db_path}"


def _engine_kwargs(url: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # FastAPI runs handlers on worker threads
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One connection for every thread, otherwise each sees an empty DB
            kwargs["poolclass"] = StaticPool
    return kwargs


engine = create_engine(_DATABASE_URL, **_engine_kwargs(_DATABASE_URL))

_SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)


def configure(url: str) -> None:
    """Reconfigure the engine (used by tests to inject in-memory SQLite)."""
    global engine, _SessionFactory
    engine = create_engine(url, **_engine_kwargs(url))
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)


def init_db() -> None:
    """Create all tables if they don't exist."""
    Base.metadata.create_all(engine)


def reset_db() -> None:
    """Drop and recreate every table. Tests only."""
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Provide a transactional session scope.

    Usage:
        with get_session() as session:
            session.add(thing)
            # auto-commits on exit, rolls back on exception
    """
    # Always use the current _SessionFactory (supports reconfiguration)
    factory = _SessionFactory
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
