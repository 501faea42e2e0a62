"""
HTTP routes used by the board (/wboard/v1/*) and the autologin redemption entry point.
Every /wboard/v1 route is gated by require_signed_request.
"""
import html
import json
import logging
import re

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

from wboard_connector.audit import (
    EVENT_AUTOLOGIN_DENIED,
    EVENT_AUTOLOGIN_ISSUED,
    EVENT_AUTOLOGIN_REDEEMED,
    EVENT_AUTOLOGIN_REJECTED,
    EVENT_KEY_ROTATED,
    OUTCOME_FAIL,
    OUTCOME_SUCCESS,
    log_audit,
    query_audit_logs,
)
from wboard_connector.autologin import TOKEN_PARAM, TokenIssuer, get_token_issuer
from wboard_connector.config import PLUGIN_VERSION, SESSION_COOKIE, SESSION_TTL, SITE_URL
from wboard_connector.database import get_db
from wboard_connector.errors import MissingUserId, WBoardError
from wboard_connector.multisite import MAX_USER_ID, MultisiteResolver
from wboard_connector.secret_store import SecretStore, get_secret_store
from wboard_connector.security import (
    VerifiedRequest,
    get_request_ip,
    require_signed_request,
    to_http_exception,
)
from wboard_connector.signing import API_PREFIX

logger = logging.getLogger(__name__)

router = APIRouter(prefix=API_PREFIX)
login_router = APIRouter()

_USER_ID_RE = re.compile(r"[0-9]{1,19}")


def _parse_user_id(body: bytes) -> int:
    """
    user_id from a JSON body: a positive integer or a string of digits, within the
    signed 64-bit range. Floats, booleans and anything else count as missing.
    """
    try:
        data = json.loads(body) if body else {}
    except ValueError:
        data = {}
    raw = data.get("user_id") if isinstance(data, dict) else None
    if isinstance(raw, str) and _USER_ID_RE.fullmatch(raw.strip()):
        user_id = int(raw.strip())
    elif isinstance(raw, int) and not isinstance(raw, bool):
        user_id = raw
    else:
        raise MissingUserId()
    if not 0 < user_id <= MAX_USER_ID:
        raise MissingUserId()
    return user_id


@router.get("/status")
def get_status(
    verified: VerifiedRequest = Depends(require_signed_request),
    secret_store: SecretStore = Depends(get_secret_store),
    db: Session = Depends(get_db),
):
    """Site status polled by the board."""
    return {
        "plugin_version": PLUGIN_VERSION,
        "installed_at": secret_store.installed_at(),
        "multisite": MultisiteResolver(db).get_multisite_info(),
    }


@router.post("/autologin")
def create_autologin(
    verified: VerifiedRequest = Depends(require_signed_request),
    issuer: TokenIssuer = Depends(get_token_issuer),
    db: Session = Depends(get_db),
):
    """Issue a single-use autologin token for body {"user_id": <int>}."""
    try:
        user_id = _parse_user_id(verified.body)
    except MissingUserId as e:
        raise to_http_exception(e)
    try:
        grant = issuer.issue(user_id)
    except WBoardError as e:
        logger.warning("Autologin refused for user_id=%s: %s", user_id, e.code)
        log_audit(
            db, EVENT_AUTOLOGIN_DENIED, user_id=user_id, ip=verified.ip, outcome=OUTCOME_FAIL, reason=e.code
        )
        raise to_http_exception(e)
    log_audit(db, EVENT_AUTOLOGIN_ISSUED, user_id=user_id, ip=verified.ip, outcome=OUTCOME_SUCCESS)
    return grant.to_response()


@router.post("/regenerate-key")
def regenerate_key(
    verified: VerifiedRequest = Depends(require_signed_request),
    secret_store: SecretStore = Depends(get_secret_store),
    db: Session = Depends(get_db),
):
    """Rotate the shared secret. The board must switch to the returned value immediately."""
    new_key = secret_store.rotate()
    log_audit(db, EVENT_KEY_ROTATED, ip=verified.ip, outcome=OUTCOME_SUCCESS)
    return {"success": True, "secret_key": new_key}


@router.get("/audit")
def list_audit_logs(
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    verified: VerifiedRequest = Depends(require_signed_request),
    db: Session = Depends(get_db),
):
    """Recent audit events, most recent first."""
    return query_audit_logs(db, limit=limit, event_type=event_type, outcome=outcome)


def _error_page(title: str, message: str, status_code: int) -> HTMLResponse:
    body = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
  <h1>{html.escape(title)}</h1>
  <p>{html.escape(message)}</p>
</body>
</html>"""
    return HTMLResponse(body, status_code=status_code)


@login_router.get("/")
def autologin_redeem(
    request: Request,
    issuer: TokenIssuer = Depends(get_token_issuer),
    db: Session = Depends(get_db),
):
    """
    Redeem ?wboard_token=...: consume the token, open a session, redirect to the admin page.
    Without the parameter this is a plain landing page.
    """
    token = request.query_params.get(TOKEN_PARAM)
    if token is None:
        return HTMLResponse("<h1>WBoard Connector</h1>")

    ip = get_request_ip(request)
    user_id = issuer.redeem(token.strip())
    if user_id is None:
        logger.warning("Autologin rejected from %s: invalid or expired token", ip)
        log_audit(db, EVENT_AUTOLOGIN_REJECTED, ip=ip, outcome=OUTCOME_FAIL, reason="invalid_token")
        return _error_page("Authentication error", "Invalid or expired token.", 401)

    session_token = issuer.login_user(user_id)
    if session_token is None:
        logger.error("Autologin token for user_id=%s redeemed but the user no longer exists", user_id)
        log_audit(db, EVENT_AUTOLOGIN_REJECTED, user_id=user_id, ip=ip, outcome=OUTCOME_FAIL, reason="user_gone")
        return _error_page("Authentication error", "Unable to log the user in.", 500)

    log_audit(db, EVENT_AUTOLOGIN_REDEEMED, user_id=user_id, ip=ip, outcome=OUTCOME_SUCCESS)
    logger.info("Autologin redeemed for user_id=%s", user_id)
    response = RedirectResponse(url=issuer.resolver.get_admin_url_for_user(user_id), status_code=302)
    response.set_cookie(
        SESSION_COOKIE,
        session_token,
        max_age=SESSION_TTL,
        httponly=True,
        samesite="lax",
        secure=SITE_URL.startswith("https://"),
    )
    return response
