"""
Engine and sessions for options, transients, users and the audit log.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from wboard_connector.config import DATABASE_URL
from wboard_connector.models import Base


def _make_engine(url: str):
    if url.startswith("sqlite:///:memory:"):
        # One shared connection, otherwise every session would see its own empty database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        # Sync routes and the verification dependency run on FastAPI's threadpool
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


def get_db():
    """Dependency: request-scoped session, closed when the response is sent."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
