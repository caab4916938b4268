"""
Database configuration and session management.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ai_optimizer.core.config import settings
from ai_optimizer.models.database import Base


def build_engine(url: str, echo: bool = False):
    """Create an engine; SQLite connections are shared across worker threads."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args)


# Create engine
engine = build_engine(settings.DATABASE_URL, settings.DB_ECHO)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None) -> None:
    """Create the experiment tables if they do not exist."""
    Base.metadata.create_all(bind=bind or engine)
