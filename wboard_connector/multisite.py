"""
Multisite (network) helpers: deployment mode, super-admin lookup, admin landing URLs.
"""
from dataclasses import dataclass

from sqlalchemy.orm import Session

from wboard_connector.config import (
    BLOG_ID,
    MAIN_BLOG_ID,
    MULTISITE,
    NETWORK_DOMAIN,
    NETWORK_ID,
    NETWORK_NAME,
    SITE_COUNT,
    SITE_URL,
)
from wboard_connector.models import User

ADMINISTRATOR_ROLE = "administrator"

# User ids are stored as signed 64-bit integers
MAX_USER_ID = 2**63 - 1


@dataclass(frozen=True)
class NetworkInfo:
    """Where this site sits in its network. Only reported in multisite mode."""
    blog_id: int = BLOG_ID
    main_blog_id: int = MAIN_BLOG_ID
    network_id: int | None = NETWORK_ID
    network_name: str | None = NETWORK_NAME
    network_domain: str | None = NETWORK_DOMAIN
    site_count: int = SITE_COUNT


class MultisiteResolver:
    def __init__(
        self,
        db: Session,
        multisite: bool = MULTISITE,
        site_url: str = SITE_URL,
        network: NetworkInfo | None = None,
    ):
        self.db = db
        self.multisite = multisite
        self.site_url = site_url.rstrip("/")
        self.network = network or NetworkInfo()

    def is_multisite(self) -> bool:
        return self.multisite

    def get_user(self, user_id: int) -> User | None:
        if not 0 < user_id <= MAX_USER_ID:
            return None
        return self.db.query(User).filter(User.id == user_id).first()

    def is_user_super_admin(self, user_id: int) -> bool:
        """Always False on a single site."""
        if not self.multisite:
            return False
        user = self.get_user(user_id)
        return bool(user and user.is_super_admin)

    def user_can_administrate(self, user_id: int) -> bool:
        """Super admin (multisite) or administrator of the current site."""
        user = self.get_user(user_id)
        if not user:
            return False
        if self.is_user_super_admin(user_id):
            return True
        return user.role == ADMINISTRATOR_ROLE

    def admin_url(self) -> str:
        return f"{self.site_url}/wp-admin/"

    def network_admin_url(self) -> str:
        return f"{self.site_url}/wp-admin/network/"

    def get_admin_url_for_user(self, user_id: int) -> str:
        if self.is_user_super_admin(user_id):
            return self.network_admin_url()
        return self.admin_url()

    def get_site_count(self) -> int:
        return self.network.site_count if self.multisite else 1

    def get_multisite_info(self) -> dict:
        if not self.multisite:
            return {"is_multisite": False}
        network = self.network
        return {
            "is_multisite": True,
            "is_main_site": network.blog_id == network.main_blog_id,
            "blog_id": network.blog_id,
            "network_id": network.network_id,
            "network_name": network.network_name,
            "network_domain": network.network_domain,
            "site_count": self.get_site_count(),
        }
