"""Database connection, session management and unit-of-work helper."""
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from .config import get_settings

settings = get_settings()

engine_kwargs = {"pool_pre_ping": True, "echo": settings.sql_echo}
if not settings.database_url.startswith("sqlite"):
    # Conservative pool for a small managed Postgres instance
    engine_kwargs.update(
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,
        pool_timeout=30,
    )

engine = create_engine(settings.database_url, **engine_kwargs)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Run a block of writes as one unit of work.

    Commits when the block finishes and rolls everything back if it raises,
    so no partial mutation (or orphaned activity row) is ever persisted.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
