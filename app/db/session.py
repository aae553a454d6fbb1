"""
Database engine and session management.
"""
from collections.abc import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings

engine = create_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def apply_lock_timeout(db: Session, timeout_ms: int | None = None) -> None:
    """Bound row-lock waits for the current transaction (Postgres only)."""
    bind = db.get_bind()
    if bind.dialect.name != "postgresql":
        return
    timeout = int(timeout_ms if timeout_ms is not None else settings.LOCK_TIMEOUT_MS)
    db.execute(text(f"SET LOCAL lock_timeout = '{max(timeout, 1)}ms'"))
