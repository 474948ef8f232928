"""
Database Configuration and Session Management
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from datarecon.config import settings
import logging

logger = logging.getLogger(__name__)

# Create SQLAlchemy engine
engine = None
SessionLocal = None


def init_db(database_url=None):
    """Initialize the record store connection"""
    global engine, SessionLocal

    database_url = database_url or settings.database_url
    if not database_url:
        logger.warning("DATABASE_URL not configured - record store disabled")
        return

    logger.info("Connecting to record store...")
    engine = create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using them
    )

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    logger.info("Record store connection established")


def get_db():
    """
    Dependency for getting database session
    Usage: db: Session = Depends(get_db)

    Yields None if the record store is not configured
    """
    if SessionLocal is None:
        logger.warning("Record store not configured")
        yield None
        return

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Base class for all models
Base = declarative_base()
