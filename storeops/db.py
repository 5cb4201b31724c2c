"""Database connection and session utilities."""

from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import DATABASE_URL


def _build_connect_args(database_url: str) -> dict[str, bool]:
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def _build_engine(database_url: str) -> Engine:
    return create_engine(
        database_url,
        future=True,
        connect_args=_build_connect_args(database_url),
    )


def _build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind,
        class_=Session,
    )


engine = _build_engine(DATABASE_URL)
SessionLocal = _build_session_factory(engine)
Base = declarative_base()


def reset_engine(database_url: str) -> None:
    """Swap the active engine/session factory (used by tests)."""
    global engine, SessionLocal
    engine.dispose()
    engine = _build_engine(database_url)
    SessionLocal = _build_session_factory(engine)


def init_db() -> None:
    """Create schema if it does not exist."""
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
