"""Engine and session factory."""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from modelgate.core.config import get_settings

from .base import Base


def make_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Create an engine for database_url, defaulting to the configured URL."""
    url = database_url or get_settings().database_url
    kwargs = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **kwargs)


def make_session_factory(engine: Engine, create_tables: bool = False) -> sessionmaker:
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def open_session(database_url: Optional[str] = None) -> Session:
    """Open a session against database_url with tables created."""
    factory = make_session_factory(make_engine(database_url), create_tables=True)
    return factory()
