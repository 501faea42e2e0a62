"""
Canonical signing payload and HMAC-SHA256 signature shared by the board client and the verifier.

Payload: compact JSON object with keys "timestamp" then "data", where data is the parsed
request body ({} for an empty body), non-ASCII escaped as \\uXXXX and "/" as "\\/".
Signature: "sha256=" + hex HMAC of that payload.
"""
import hashlib
import hmac
import json
import time

API_PREFIX = "/wboard/v1"

HEADER_TIMESTAMP = "X-WBoard-Timestamp"
HEADER_SIGNATURE = "X-WBoard-Signature"
HEADER_SITE_ID = "X-WBoard-Site-ID"

SIGNATURE_PREFIX = "sha256="


def _parse_body(body: bytes | str) -> object:
    if not body:
        return {}
    try:
        return json.loads(body)
    except ValueError:
        # Unparseable bodies are signed as null; the signer must do the same
        return None


def canonical_payload(timestamp: int, body: bytes | str) -> bytes:
    payload = {"timestamp": timestamp, "data": _parse_body(body)}
    encoded = json.dumps(payload, separators=(",", ":"))
    # Slashes escaped as PHP's json_encode writes them; "/" only occurs inside strings
    return encoded.replace("/", "\\/").encode("utf-8")


def compute_signature(secret: str, timestamp: int, body: bytes | str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"), canonical_payload(timestamp, body), hashlib.sha256
    ).hexdigest()
    return SIGNATURE_PREFIX + digest


def signatures_match(expected: str, supplied: str) -> bool:
    """Constant-time comparison (bytes, so non-ASCII input cannot raise)."""
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))


def sign_headers(
    secret: str,
    body: bytes | str = b"",
    *,
    timestamp: int | None = None,
    site_id: str | None = None,
) -> dict[str, str]:
    """Headers a board sends with a request carrying `body`."""
    ts = int(time.time()) if timestamp is None else timestamp
    headers = {
        HEADER_TIMESTAMP: str(ts),
        HEADER_SIGNATURE: compute_signature(secret, ts, body),
    }
    if site_id:
        headers[HEADER_SITE_ID] = site_id
    return headers
