"""
Board-side client: signs requests exactly as the connector verifies them.
Pass an httpx.Client (e.g. FastAPI's TestClient) to reuse a transport.
"""
import json
import logging

import httpx

from wboard_connector.signing import API_PREFIX, sign_headers

logger = logging.getLogger(__name__)


class BoardRequestError(Exception):
    def __init__(self, status_code: int, error: str | None, description: str | None):
        super().__init__(f"{status_code} {error}: {description}")
        self.status_code = status_code
        self.error = error
        self.description = description


class BoardClient:
    def __init__(
        self,
        base_url: str,
        secret: str,
        *,
        site_id: str | None = None,
        http: httpx.Client | None = None,
        timeout: float = 10.0,
    ):
        self.secret = secret
        self.site_id = site_id
        self._http = http or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict | list:
        body = json.dumps(payload).encode("utf-8") if payload is not None else b""
        headers = sign_headers(self.secret, body, site_id=self.site_id)
        if body:
            headers["Content-Type"] = "application/json"
        r = self._http.request(method, f"{API_PREFIX}{path}", content=body, headers=headers)
        if r.status_code >= 400:
            try:
                detail = r.json().get("detail") or {}
            except ValueError:
                detail = {}
            if not isinstance(detail, dict):
                detail = {"error_description": str(detail)}
            logger.debug("Board request %s %s failed: %s", method, path, r.status_code)
            raise BoardRequestError(r.status_code, detail.get("error"), detail.get("error_description"))
        return r.json()

    def status(self) -> dict:
        return self._request("GET", "/status")

    def autologin(self, user_id: int) -> dict:
        return self._request("POST", "/autologin", {"user_id": user_id})

    def regenerate_key(self) -> str:
        """Rotate the site's secret and switch this client to the new one."""
        data = self._request("POST", "/regenerate-key")
        self.secret = data["secret_key"]
        return self.secret

    def audit(self, limit: int = 100) -> list[dict]:
        return self._request("GET", f"/audit?limit={int(limit)}")

    def close(self) -> None:
        self._http.close()
