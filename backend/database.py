"""
Database configuration and session management
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from dotenv import load_dotenv
import logging
import os

load_dotenv(dotenv_path=".env")
logger = logging.getLogger(__name__)

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./print_queue.db")

# Base class for models
Base = declarative_base()


def make_engine(url: str = DATABASE_URL):
    """Create an engine; SQLite gets a thread-shareable connection, PostgreSQL a pool"""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)

    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Verify connections before using
        echo=False
    )


def make_session_factory(bind) -> sessionmaker:
    # Jobs handed to observers outlive their session
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


@contextmanager
def session_scope(session_factory: sessionmaker):
    """Context manager for database session"""
    db: Session = session_factory()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(f"Session rolled back: {e}")
        raise
    finally:
        db.close()


def init_db(bind):
    """Initialize database - create all tables"""
    import models  # noqa: F401  (registers tables on Base.metadata)

    try:
        Base.metadata.create_all(bind=bind)
        logger.info("✓ Database tables created successfully")
    except Exception as e:
        logger.error(f"✗ Failed to create database tables: {e}")
        raise


def drop_all_tables(bind):
    """Drop all tables (use with caution!)"""
    Base.metadata.drop_all(bind=bind)
    logger.warning("⚠ All tables dropped")
