"""Database models and connection for job persistence."""
import os
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

# Database file path
DB_PATH = os.getenv("TRANSCRIPT_DB_PATH", "jobs.db")
DATABASE_URL = f"sqlite:///{DB_PATH}"

# Create engine and session
engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored by SQLite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Job(Base):
    """Job model for tracking transcription jobs.

    Note: API keys are NEVER stored in the database.
    They are passed directly to the worker and only kept in memory.
    """
    __tablename__ = "jobs"

    id = Column(String, primary_key=True, index=True)
    status = Column(String, nullable=False)  # queued, processing, completed, failed
    created_at = Column(DateTime, default=utcnow, nullable=False)
    audio_filename = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    output_format = Column(String, default="text", nullable=False)
    language = Column(String, nullable=True)
    model = Column(String, nullable=True)
    diarize = Column(Boolean, default=False, nullable=False)
    stage = Column(String, nullable=True)  # pipeline stage reached, or where it failed
    error_message = Column(String, nullable=True)
    transcript_filename = Column(String, nullable=True)


def configure(database_url: str) -> None:
    """Point the module at another database (used by tests)."""
    global engine, SessionLocal
    engine.dispose()
    engine = create_engine(database_url, connect_args={"check_same_thread": False})
    SessionLocal.configure(bind=engine)


def init_db():
    """Initialize the database, creating tables if they don't exist."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Get a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
