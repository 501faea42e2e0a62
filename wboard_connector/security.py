"""
Verification of requests from the board: rate limit, header presence, timestamp window,
HMAC signature, in that order. The first failing check rejects the request.

Side effects are not rolled back: a request rejected at any step after the rate limit has
still consumed a slot in its client's window.
"""
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping

from fastapi import Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from wboard_connector.audit import EVENT_REQUEST_REJECTED, OUTCOME_FAIL, log_audit
from wboard_connector.client_ip import resolve_client_ip
from wboard_connector.config import (
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW,
    TIMESTAMP_TOLERANCE,
    TRUSTED_IP_HEADERS,
)
from wboard_connector.database import get_db
from wboard_connector.errors import (
    InvalidSignature,
    InvalidTimestamp,
    MissingHeaders,
    NoSecretKey,
    RateLimited,
    WBoardError,
)
from wboard_connector.rate_limit import RateLimiter
from wboard_connector.secret_store import SecretStore, get_secret_store
from wboard_connector.signing import (
    HEADER_SIGNATURE,
    HEADER_SITE_ID,
    HEADER_TIMESTAMP,
    compute_signature,
    signatures_match,
)
from wboard_connector.transients import Clock, get_transient_store

logger = logging.getLogger(__name__)

# Epoch seconds fit in 19 digits; longer values are rejected before int() sees them
_TIMESTAMP_RE = re.compile(r"-?[0-9]{1,19}")


class RequestAuthenticator:
    def __init__(
        self,
        secret_store: SecretStore,
        rate_limiter: RateLimiter,
        timestamp_tolerance: int = TIMESTAMP_TOLERANCE,
        clock: Clock = time.time,
    ):
        self.secret_store = secret_store
        self.rate_limiter = rate_limiter
        self.timestamp_tolerance = timestamp_tolerance
        self._clock = clock

    def verify(self, client_ip: str, headers: Mapping[str, str], raw_body: bytes | str) -> None:
        """
        Accept the request or raise the WBoardError of the first failing check.
        On success the last-request marker is updated.
        """
        window = self.rate_limiter.check_and_increment(client_ip)
        if self.rate_limiter.exceeded(window):
            raise RateLimited(
                self.rate_limiter.retry_after(window),
                repeated=window.count > self.rate_limiter.max_requests + 1,
            )

        lowered = {k.lower(): v for k, v in headers.items()}
        raw_timestamp = (lowered.get(HEADER_TIMESTAMP.lower()) or "").strip()
        signature = lowered.get(HEADER_SIGNATURE.lower()) or ""
        if not raw_timestamp or not signature:
            raise MissingHeaders()

        timestamp = self.verify_timestamp(raw_timestamp)
        self.verify_signature(timestamp, signature, raw_body)

        now = int(self._clock())
        self.secret_store.mark_request(datetime.fromtimestamp(now, timezone.utc))
        site_id = lowered.get(HEADER_SITE_ID.lower())
        logger.debug("Verified board request from %s (site_id=%s)", client_ip, site_id)

    def verify_timestamp(self, raw_timestamp: str) -> int:
        """Parse the timestamp header; reject it if it lies outside the tolerance window."""
        if not _TIMESTAMP_RE.fullmatch(raw_timestamp):
            raise InvalidTimestamp()
        timestamp = int(raw_timestamp)
        if abs(int(self._clock()) - timestamp) > self.timestamp_tolerance:
            raise InvalidTimestamp()
        return timestamp

    def verify_signature(self, timestamp: int, signature: str, raw_body: bytes | str) -> None:
        # One read: a concurrent rotation is seen entirely or not at all
        secret = self.secret_store.get()
        if not secret:
            raise NoSecretKey()
        expected = compute_signature(secret, timestamp, raw_body)
        if not signatures_match(expected, signature):
            raise InvalidSignature()


_authenticator: RequestAuthenticator | None = None


def get_authenticator() -> RequestAuthenticator:
    """Dependency: process-wide authenticator built from config."""
    global _authenticator
    if _authenticator is None:
        limiter = RateLimiter(get_transient_store(), RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW)
        _authenticator = RequestAuthenticator(get_secret_store(), limiter)
    return _authenticator


def get_request_ip(request: Request) -> str:
    remote = request.client.host if request.client is not None else None
    return resolve_client_ip(request.headers, remote, TRUSTED_IP_HEADERS)


def to_http_exception(error: WBoardError) -> HTTPException:
    headers = None
    if isinstance(error, RateLimited):
        headers = {"Retry-After": str(error.retry_after)}
    return HTTPException(status_code=error.status_code, detail=error.to_detail(), headers=headers)


@dataclass
class VerifiedRequest:
    ip: str
    body: bytes


def _verify_or_raise(
    authenticator: RequestAuthenticator,
    db: Session,
    ip: str,
    headers: Mapping[str, str],
    body: bytes,
) -> None:
    try:
        authenticator.verify(ip, headers, body)
    except RateLimited as e:
        # One audit row per throttled window; further refusals only cost the counter update
        if e.repeated:
            logger.debug("Still rate limited: %s", ip)
        else:
            logger.warning("Rejected board request from %s: %s", ip, e.code)
            log_audit(db, EVENT_REQUEST_REJECTED, ip=ip, outcome=OUTCOME_FAIL, reason=e.code)
        raise to_http_exception(e)
    except WBoardError as e:
        if isinstance(e, NoSecretKey):
            logger.error("Rejected board request from %s: secret key not configured", ip)
        else:
            logger.warning("Rejected board request from %s: %s", ip, e.code)
        log_audit(db, EVENT_REQUEST_REJECTED, ip=ip, outcome=OUTCOME_FAIL, reason=e.code)
        raise to_http_exception(e)


async def require_signed_request(
    request: Request,
    authenticator: RequestAuthenticator = Depends(get_authenticator),
    db: Session = Depends(get_db),
) -> VerifiedRequest:
    """Dependency: reject the request unless it is signed by the board. Returns IP and raw body."""
    body = await request.body()
    ip = get_request_ip(request)
    await run_in_threadpool(_verify_or_raise, authenticator, db, ip, request.headers, body)
    return VerifiedRequest(ip=ip, body=body)
