"""SQLModel engine singleton and session dependency."""
from typing import Generator

from sqlmodel import Session, SQLModel, create_engine

from splitsync.config import get_settings

_engine = None


def get_engine():
    """Lazily build the process-wide engine and its tables."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            connect_args={"check_same_thread": False},  # sync jobs and request handlers share it
        )
        init_db(_engine)
    return _engine


def init_db(engine) -> None:
    """Create every table. Idempotent."""
    # Import all models so metadata is populated before create_all
    from splitsync.models import entities, feed, sync  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a DB session."""
    with Session(get_engine()) as session:
        yield session
