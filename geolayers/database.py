from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from geolayers.config import settings


def _make_engine(url: str):
    if not url.startswith("sqlite"):
        return create_engine(url)

    connect_args = {"check_same_thread": False}
    # An in-memory database only lives as long as its single connection
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, connect_args=connect_args)


engine = _make_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Yields a database session and closes it after the request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
