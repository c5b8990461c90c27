"""
Database configuration and session management for the Inventory service.

This module sets up the database connection using SQLAlchemy, provides
a session factory for request handlers and a unit-of-work helper for
operations that touch several rows.
"""
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import Session, sessionmaker

from .config import DATABASE_URL, DATABASE_ECHO

logger = logging.getLogger(__name__)

# SQLite needs the same connection shared across threads (TestClient, dev runs)
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine       = create_engine(DATABASE_URL, echo=DATABASE_ECHO, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base         = declarative_base()

def get_db():
    """
    Dependency function that provides a database session.
    
    Yields:
        Session: SQLAlchemy database session
        
    Usage:
        Use as a FastAPI dependency to inject database sessions into route handlers.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session):
    """
    Run a block of changes as a single database transaction.

    Commits when the block finishes and rolls back (re-raising) if anything
    inside it fails, so partial stock movements are never persisted.

    Args:
        db: Database session

    Yields:
        Session: The same session, for convenience
    """
    try:
        yield db
        db.commit()
    except Exception:
        logger.debug("Rolling back unit of work")
        db.rollback()
        raise
