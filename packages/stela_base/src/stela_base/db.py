import functools

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from stela_base.settings import get_settings


@functools.lru_cache()
def get_engine():
    """
    Get SQLAlchemy engine (cached).

    The pool is deliberately small and fixed: reconciliation transactions are
    short, and the liquidation bot only reads.
    """
    settings = get_settings()
    url = settings.database_url
    if url.startswith("sqlite"):
        return create_engine(url, echo=False)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout_seconds,
        echo=False,
    )


@functools.lru_cache()
def get_sessionmaker():
    """Get SQLAlchemy sessionmaker (cached)."""
    engine = get_engine()
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """
    Generator yielding a database session.

    Used as ``db = next(get_db())`` in workers; the caller closes it.
    """
    SessionLocal = get_sessionmaker()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
