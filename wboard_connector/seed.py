"""
Install-time bootstrap: secret key and install date if absent, optional user from environment.
Optional: set WBOARD_SEED_USER (+ WBOARD_SEED_ROLE, WBOARD_SEED_SUPER_ADMIN).
"""
import logging
import os

from sqlalchemy.orm import Session

from wboard_connector.models import User
from wboard_connector.multisite import ADMINISTRATOR_ROLE
from wboard_connector.secret_store import SecretStore

logger = logging.getLogger(__name__)


def seed_from_env(db: Session) -> None:
    """Create one user from env if set and not already present."""
    username = os.environ.get("WBOARD_SEED_USER")
    if not username:
        return
    role = os.environ.get("WBOARD_SEED_ROLE", ADMINISTRATOR_ROLE).strip() or ADMINISTRATOR_ROLE
    super_admin = os.environ.get("WBOARD_SEED_SUPER_ADMIN", "0").strip().lower() in ("1", "true", "yes")
    if db.query(User).filter(User.username == username).first() is None:
        db.add(User(username=username, role=role, is_super_admin=super_admin))
        db.commit()
        logger.info("Seeded user: %s (role=%s, super_admin=%s)", username, role, super_admin)
    else:
        logger.debug("User already exists: %s", username)


def bootstrap(db: Session, secret_store: SecretStore) -> None:
    """Activation: ensure secret and install date exist, then seed from env."""
    secret_store.ensure()
    secret_store.ensure_installed_at()
    seed_from_env(db)
