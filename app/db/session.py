from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from app.core.config import DATABASE_URL


def _normalize_url(url: str) -> str:
    # Render/Heroku style URLs
    if url.startswith("postgres://"):
        return "postgresql://" + url[10:]
    return url


def build_engine(url: str):
    url = _normalize_url(url)
    if url.startswith("sqlite"):
        # In-memory / file SQLite: one shared connection, usable across threads
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    # Configure connection pooling to prevent connection exhaustion
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=10,  # Number of connections to maintain persistently
        max_overflow=20,  # Maximum number of connections to create beyond pool_size
        pool_timeout=30,  # Seconds to wait before giving up on getting a connection
        pool_pre_ping=True,  # Verify connections before using them (handles stale connections)
        pool_recycle=3600,  # Recycle connections after 1 hour
        echo=False,
    )


SQLALCHEMY_DATABASE_URL = _normalize_url(DATABASE_URL)
engine = build_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
