from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from learnhub import config

connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {"connect_timeout": 5}

# Health-check pings so the app doesn't hang on a dropped connection
engine = create_engine(
    config.DATABASE_URL,
    pool_pre_ping=True,
    connect_args=connect_args,
)
SessionLocal = sessionmaker(bind=engine, autoflush=False)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    """Naive UTC timestamp; columns are stored without tz info."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
