"""Database session management."""

from collections.abc import Generator
from typing import Any, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from giftguard.config import get_settings


def create_db_engine(database_url: str) -> Engine:
    """Create an engine with pooling suited to the database backend.

    SQLite gets a thread-shareable connection (and a single static
    connection for in-memory databases); other backends use a QueuePool
    sized from settings.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    settings = get_settings()
    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=False,  # Set to True for SQL query logging
    )


engine = create_db_engine(get_settings().database_url)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, Any, None]:
    """Get database session.

    Usage with FastAPI dependency injection:
        @app.post("/api/v1/transactions/evaluate")
        def evaluate(candidate: CandidateTransaction, db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None) -> None:
    """Initialize database (create all tables).

    Note: only for testing and development, production schemas are migrated.
    """
    from giftguard.db.models import Base

    Base.metadata.create_all(bind=bind or engine)


def drop_db(bind: Optional[Engine] = None) -> None:
    """Drop all tables.

    WARNING: This will delete all data!
    Only use in testing.
    """
    from giftguard.db.models import Base

    Base.metadata.drop_all(bind=bind or engine)
