"""
Autologin tokens: short-lived, single-use credentials that resolve to an administrator.

Issued -> Redeemed (pop on first use) or Issued -> Expired (TTL). A redeemed or expired token
never resolves again. Redemption sets a session cookie (HS256 JWT) and redirects to the
user's admin landing page.
"""
import logging
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlencode

import jwt
from fastapi import Depends
from sqlalchemy.orm import Session

from wboard_connector.config import AUTOLOGIN_TTL, SESSION_KEY, SESSION_TTL, SITE_URL
from wboard_connector.database import get_db
from wboard_connector.errors import NotAdministrator, UserNotFound
from wboard_connector.multisite import MultisiteResolver
from wboard_connector.transients import Clock, TransientStore, get_transient_store

logger = logging.getLogger(__name__)

TOKEN_PARAM = "wboard_token"
KEY_PREFIX = "wboard_autologin_"
TOKEN_LENGTH = 32
_TOKEN_ALPHABET = string.ascii_letters + string.digits


def generate_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


@dataclass
class AutologinGrant:
    token: str
    login_url: str
    expires_at: datetime
    redirect_url: str

    def to_response(self) -> dict:
        return {
            "success": True,
            "token": self.token,
            "login_url": self.login_url,
            "expires_at": self.expires_at.isoformat(timespec="seconds"),
            "redirect_url": self.redirect_url,
        }


class TokenIssuer:
    def __init__(
        self,
        store: TransientStore,
        resolver: MultisiteResolver,
        ttl: int = AUTOLOGIN_TTL,
        site_url: str = SITE_URL,
        clock: Clock = time.time,
    ):
        self.store = store
        self.resolver = resolver
        self.ttl = ttl
        self.site_url = site_url.rstrip("/")
        self._clock = clock

    def issue(self, user_id: int) -> AutologinGrant:
        """Mint a token for an administrator (or network super admin in multisite)."""
        if self.resolver.get_user(user_id) is None:
            raise UserNotFound()
        if not self.resolver.user_can_administrate(user_id):
            raise NotAdministrator()

        token = generate_token()
        self.store.set(KEY_PREFIX + token, str(user_id), self.ttl)
        now = int(self._clock())
        grant = AutologinGrant(
            token=token,
            login_url=f"{self.site_url}/?{urlencode({TOKEN_PARAM: token})}",
            expires_at=datetime.fromtimestamp(now + self.ttl, timezone.utc),
            redirect_url=self.resolver.get_admin_url_for_user(user_id),
        )
        logger.info("Autologin token issued for user_id=%s (expires in %ss)", user_id, self.ttl)
        return grant

    def redeem(self, token: str) -> int | None:
        """User id for a live token, consuming it; None if unknown, used or expired."""
        if not token:
            return None
        value = self.store.pop(KEY_PREFIX + token)
        if value is None:
            return None
        return int(value)

    def login_user(self, user_id: int) -> str | None:
        """Session token for the user, or None if the account no longer exists."""
        if self.resolver.get_user(user_id) is None:
            return None
        now = int(self._clock())
        payload = {"sub": str(user_id), "iat": now, "exp": now + SESSION_TTL}
        return jwt.encode(payload, SESSION_KEY, algorithm="HS256")


def decode_session(session_token: str) -> int | None:
    """User id carried by a session cookie, or None if invalid or expired."""
    try:
        payload = jwt.decode(session_token, SESSION_KEY, algorithms=["HS256"])
    except jwt.InvalidTokenError as e:
        logger.debug("Session token invalid: %s", e)
        return None
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        return None


def get_token_issuer(db: Session = Depends(get_db)) -> TokenIssuer:
    """Dependency: token issuer bound to the request's DB session."""
    return TokenIssuer(get_transient_store(), MultisiteResolver(db))
