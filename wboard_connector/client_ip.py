"""
Best-effort client IP for rate limiting.
Proxy headers are honoured only when listed in TRUSTED_IP_HEADERS; they are spoofable otherwise.
"""
import ipaddress
from typing import Iterable, Mapping

UNKNOWN_IP = "0.0.0.0"


def _valid_ip(value: str | None) -> str | None:
    if not value:
        return None
    # Forwarded-for style headers may carry a chain; the first entry is the original client
    candidate = value.split(",")[0].strip()
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return None
    return candidate


def resolve_client_ip(
    headers: Mapping[str, str],
    remote_addr: str | None,
    trusted_headers: Iterable[str] = (),
) -> str:
    """
    Walk trusted headers in priority order, then the socket address.
    The first syntactically valid IP wins; UNKNOWN_IP when none does.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in trusted_headers:
        ip = _valid_ip(lowered.get(name.lower()))
        if ip:
            return ip
    return _valid_ip(remote_addr) or UNKNOWN_IP
