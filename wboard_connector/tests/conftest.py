"""
Pytest configuration for wboard_connector. Use in-memory SQLite so tests don't touch the filesystem.
"""
import os

# In-memory SQLite; database.py uses StaticPool so all connections share the same DB
os.environ["WBOARD_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["WBOARD_TRANSIENT_BACKEND"] = "database"
os.environ["WBOARD_SITE_URL"] = "http://site.test"
os.environ["WBOARD_SESSION_KEY"] = "test-session-key-not-secret"
os.environ.pop("WBOARD_MULTISITE", None)
os.environ.pop("WBOARD_TRUSTED_IP_HEADERS", None)
for var in (
    "WBOARD_BLOG_ID",
    "WBOARD_MAIN_BLOG_ID",
    "WBOARD_NETWORK_ID",
    "WBOARD_NETWORK_NAME",
    "WBOARD_NETWORK_DOMAIN",
    "WBOARD_SITE_COUNT",
    "WBOARD_TRANSIENT_SWEEP_EVERY",
    "WBOARD_AUDIT_RETENTION_DAYS",
    "WBOARD_AUDIT_PRUNE_EVERY",
):
    os.environ.pop(var, None)
# Avoid seed_from_env picking up a developer's environment
for var in ("WBOARD_SEED_USER", "WBOARD_SEED_ROLE", "WBOARD_SEED_SUPER_ADMIN"):
    os.environ.pop(var, None)

import pytest  # noqa: E402

from wboard_connector.database import SessionLocal, engine  # noqa: E402
from wboard_connector.models import Base, User  # noqa: E402


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def fresh_db():
    """Every test starts with empty tables (secret, transients, users, audit)."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(db):
    """admin (42), editor (7), network super admin (99)."""
    db.add_all(
        [
            User(id=42, username="admin", role="administrator"),
            User(id=7, username="editor", role="editor"),
            User(id=99, username="network", role="subscriber", is_super_admin=True),
        ]
    )
    db.commit()
    return {"admin": 42, "editor": 7, "super_admin": 99}
