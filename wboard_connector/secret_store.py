"""
Shared HMAC secret and the "last verified request" marker.

The secret is persisted in the options table; exactly one value is active. rotate() replaces
it wholesale: anything signed with the previous value fails verification from then on
(no grace period). The last-request marker is a transient kept for one day.
"""
import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

from wboard_connector.config import LAST_REQUEST_TTL
from wboard_connector.models import Option
from wboard_connector.transients import TransientStore

logger = logging.getLogger(__name__)

SECRET_OPTION = "wboard_connector_secret_key"
INSTALLED_AT_OPTION = "wboard_connector_installed_at"
LAST_REQUEST_KEY = "wboard_connector_last_request"

SECRET_LENGTH = 64
# Letters, digits and the two punctuation sets WordPress password generation uses
SECRET_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*()" + "-_ []{}<>~`+=,.;:/?|"


def generate_secret(length: int = SECRET_LENGTH) -> str:
    return "".join(secrets.choice(SECRET_ALPHABET) for _ in range(length))


class SecretStore:
    def __init__(self, session_factory: Callable[[], Session], transients: TransientStore):
        self._session_factory = session_factory
        self._transients = transients

    def _get_option(self, name: str) -> str | None:
        db = self._session_factory()
        try:
            row = db.get(Option, name)
            return row.value if row and row.value else None
        finally:
            db.close()

    def _set_option(self, name: str, value: str) -> None:
        db = self._session_factory()
        try:
            db.merge(Option(name=name, value=value))
            db.commit()
        finally:
            db.close()

    def get(self) -> str | None:
        """Current secret, or None when not configured."""
        return self._get_option(SECRET_OPTION)

    def rotate(self) -> str:
        """Generate, persist and return a new secret. The previous one is invalid immediately."""
        new_secret = generate_secret()
        self._set_option(SECRET_OPTION, new_secret)
        logger.info("Secret key rotated")
        return new_secret

    def ensure(self) -> str:
        """Create the secret if absent (install time). Returns the active secret."""
        current = self.get()
        if current:
            return current
        created = generate_secret()
        self._set_option(SECRET_OPTION, created)
        logger.info("Generated initial secret key")
        return created

    def installed_at(self) -> str | None:
        return self._get_option(INSTALLED_AT_OPTION)

    def ensure_installed_at(self) -> str:
        current = self.installed_at()
        if current:
            return current
        now = datetime.now(timezone.utc).isoformat(timespec="seconds")
        self._set_option(INSTALLED_AT_OPTION, now)
        return now

    def mark_request(self, when: datetime | None = None) -> None:
        when = when or datetime.now(timezone.utc)
        self._transients.set(LAST_REQUEST_KEY, when.isoformat(timespec="seconds"), LAST_REQUEST_TTL)

    def last_request_time(self) -> datetime | None:
        """When the last verified request arrived, or None if none within the marker's lifetime."""
        value = self._transients.get(LAST_REQUEST_KEY)
        if not value:
            return None
        return datetime.fromisoformat(value)

    def clear_last_request(self) -> None:
        self._transients.delete(LAST_REQUEST_KEY)


_secret_store: SecretStore | None = None


def get_secret_store() -> SecretStore:
    """Dependency: process-wide store backed by the configured database."""
    global _secret_store
    if _secret_store is None:
        from wboard_connector.database import SessionLocal
        from wboard_connector.transients import get_transient_store

        _secret_store = SecretStore(SessionLocal, get_transient_store())
    return _secret_store
