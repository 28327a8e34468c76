"""Database session management."""

from typing import Generator

from sqlalchemy.orm import Session, sessionmaker

from secondfactor.db.engine import get_engine

# Session factory; bound lazily so importing the app never opens a connection
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,  # Prevent lazy loading issues
)


def get_db() -> Generator[Session, None, None]:
    """Dependency to get database session."""
    db = SessionLocal(bind=get_engine())
    try:
        yield db
    finally:
        db.close()
