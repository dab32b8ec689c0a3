from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nutri_reminders.db.base import Base


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create the engine for the reminder store.

    SQLite URLs get a single shared connection when in-memory (tests, local
    dev); anything else gets the pooled PostgreSQL configuration.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_recycle=300,      # Recycle connections every 5 minutes
        pool_pre_ping=True,    # Validate connections before use
        pool_timeout=30,
        echo=echo,
    )


def create_session_factory(engine: Optional[Engine]) -> Optional[sessionmaker]:
    if engine is None:
        return None
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create missing tables. Production deployments run this once at startup."""
    # Import models so they register on the metadata
    from nutri_reminders.reminders import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
