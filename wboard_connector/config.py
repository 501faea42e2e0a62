"""
Connector configuration. Every value can be overridden from the environment.
No secrets in this file; the HMAC secret lives in the database.
"""
import os
import secrets
from urllib.parse import urlsplit

PLUGIN_VERSION = "1.0.3"

# Public base URL of the site (used to build autologin and admin URLs)
SITE_URL = os.environ.get("WBOARD_SITE_URL", "http://127.0.0.1:8080").rstrip("/")

# SQLite for development; any SQLAlchemy URL works
DATABASE_URL = os.environ.get("WBOARD_DATABASE_URL", "sqlite:///./wboard_connector.db")

# Accepted clock skew between board and site, both directions (seconds)
TIMESTAMP_TOLERANCE = int(os.environ.get("WBOARD_TIMESTAMP_TOLERANCE", "300"))

# Fixed-window rate limit per client IP
RATE_LIMIT_MAX_REQUESTS = int(os.environ.get("WBOARD_RATE_LIMIT_MAX_REQUESTS", "30"))
RATE_LIMIT_WINDOW = int(os.environ.get("WBOARD_RATE_LIMIT_WINDOW", "60"))

# Autologin token lifetime (seconds)
AUTOLOGIN_TTL = int(os.environ.get("WBOARD_AUTOLOGIN_TTL", "30"))

# How long the "last request received" marker is kept (one day)
LAST_REQUEST_TTL = int(os.environ.get("WBOARD_LAST_REQUEST_TTL", "86400"))

# Headers consulted for the client IP, in priority order, before the socket address.
# Only list headers set by a proxy you control; an empty value trusts the socket address only.
TRUSTED_IP_HEADERS = [
    h.strip()
    for h in os.environ.get(
        "WBOARD_TRUSTED_IP_HEADERS", "CF-Connecting-IP,X-Forwarded-For,X-Real-IP"
    ).split(",")
    if h.strip()
]

# "database" (shared across workers) or "memory" (single process)
TRANSIENT_BACKEND = os.environ.get("WBOARD_TRANSIENT_BACKEND", "database").strip().lower()

# Multi-tenant (network) deployment
MULTISITE = os.environ.get("WBOARD_MULTISITE", "0").strip().lower() in ("1", "true", "yes", "on")

# Session cookie issued after autologin. Random per process when unset (sessions won't survive restarts).
SESSION_KEY = os.environ.get("WBOARD_SESSION_KEY") or secrets.token_urlsafe(48)
SESSION_TTL = int(os.environ.get("WBOARD_SESSION_TTL", "172800"))  # 2 days
SESSION_COOKIE = "wboard_session"

# Network identity reported by /status in multisite mode
BLOG_ID = int(os.environ.get("WBOARD_BLOG_ID", "1"))
MAIN_BLOG_ID = int(os.environ.get("WBOARD_MAIN_BLOG_ID", "1"))
NETWORK_ID = int(os.environ.get("WBOARD_NETWORK_ID", "1"))
NETWORK_NAME = os.environ.get("WBOARD_NETWORK_NAME") or None
NETWORK_DOMAIN = os.environ.get("WBOARD_NETWORK_DOMAIN") or urlsplit(SITE_URL).hostname
SITE_COUNT = int(os.environ.get("WBOARD_SITE_COUNT", "1"))

# Expired transients are swept after this many writes (0 disables the automatic sweep)
TRANSIENT_SWEEP_EVERY = int(os.environ.get("WBOARD_TRANSIENT_SWEEP_EVERY", "200"))

# Audit rows older than this are pruned every AUDIT_PRUNE_EVERY writes and at startup
AUDIT_RETENTION_DAYS = int(os.environ.get("WBOARD_AUDIT_RETENTION_DAYS", "90"))
AUDIT_PRUNE_EVERY = int(os.environ.get("WBOARD_AUDIT_PRUNE_EVERY", "500"))
