"""Database connection and session management."""
import logging

from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base

from .settings import DATABASE_URL

logger = logging.getLogger(__name__)

engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db(bind=None):
    """Create any missing tables.  Existing tables and their rows are left alone."""
    from . import models  # noqa: F401  (registers tables on Base.metadata)

    bind = bind if bind is not None else engine
    existing = set(inspect(bind).get_table_names())
    Base.metadata.create_all(bind=bind)

    created = sorted(set(Base.metadata.tables) - existing)
    if created:
        logger.info("Created tables: %s", ", ".join(created))


def get_db():
    """Dependency that provides a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
