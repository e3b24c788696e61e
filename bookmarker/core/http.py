from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable

import httpx

from bookmarker.core.errors import (
    AttachmentUploadError,
    ConfigurationError,
    RemoteApiError,
    TransportError,
)
from bookmarker.core.log import get_logger
from bookmarker.core.validate import ApiConfig

RECORDS_PATH = "/bitable/v1/apps/{appToken}/tables/{tableId}/records"
SEARCH_PATH = RECORDS_PATH + "/search"
UPLOAD_PATH = RECORDS_PATH + "/upload_file"
FIELDS_PATH = "/bitable/v1/apps/{appToken}/tables/{tableId}/fields"

BODY_METHODS = ("POST", "PUT")

log = get_logger("bookmarker.http")


class RateLimiter:
    """Minimum spacing between requests. Async, shared by every call of one client."""
    def __init__(self, rps: float):
        self.min_interval = 1.0 / max(rps, 0.01)
        self._t_last = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            now = time.monotonic()
            wait_for = self.min_interval - (now - self._t_last)
            if wait_for > 0:
                await asyncio.sleep(wait_for)
            self._t_last = time.monotonic()


def build_url(cfg: ApiConfig, relative_path: str) -> str:
    path = relative_path.replace("{appToken}", cfg.app_id).replace("{tableId}", cfg.table_id)
    return f"{cfg.proxy_url}{path}"


def ensure_ok(response: Any) -> dict[str, Any]:
    """Raises RemoteApiError unless the envelope says code == 0."""
    if not isinstance(response, dict):
        raise RemoteApiError(200, str(response)[:500])
    code = response.get("code")
    if code != 0:
        raise RemoteApiError(200, json.dumps(response, ensure_ascii=False), code=code, msg=response.get("msg"))
    return response


class ApiClient:
    """
    Async client for the Bitable API behind the proxy.
    Reads the config snapshot once per call; does not retry.
    """
    def __init__(
        self,
        config: Callable[[], ApiConfig],
        *,
        user_agent: str = "bookmarker/0.1",
        timeout_s: int = 20,
        rps: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._config = config
        self._limiter = RateLimiter(rps)
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            headers={"User-Agent": user_agent},
            follow_redirects=True,
        )

    def with_config(self, cfg: ApiConfig) -> ApiClient:
        """Same transport and limiter, fixed config. Used to probe unsaved settings."""
        probe = ApiClient(lambda: cfg, client=self._client)
        probe._limiter = self._limiter
        return probe

    async def aclose(self) -> None:
        await self._client.aclose()

    def _snapshot(self) -> ApiConfig:
        cfg = self._config()
        if not cfg.is_usable():
            log.error("api_config_incomplete", extra={
                "proxy_url": bool(cfg.proxy_url),
                "token": bool(cfg.tenant_access_token),
                "app_id": bool(cfg.app_id),
                "table_id": bool(cfg.table_id),
            })
            raise ConfigurationError("API configuration incomplete: proxyUrl and tenantAccessToken are required")
        return cfg

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        await self._limiter.wait()
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            log.warning("api_transport_fail", extra={"method": method, "url": url, "err": str(e)})
            raise TransportError(f"{method} {url}: {e}") from e
        if not resp.is_success:
            log.warning("api_call_fail", extra={"method": method, "url": url, "status": resp.status_code})
            raise RemoteApiError(resp.status_code, resp.text)
        return resp

    async def call(self, method: str, relative_path: str, body: Any = None) -> Any:
        cfg = self._snapshot()
        method = method.upper()
        url = build_url(cfg, relative_path)
        headers = {
            "Authorization": f"Bearer {cfg.tenant_access_token}",
            "Content-Type": "application/json",
        }
        kwargs: dict[str, Any] = {"headers": headers}
        if body is not None and method in BODY_METHODS:
            kwargs["content"] = json.dumps(body, ensure_ascii=False).encode("utf-8")

        log.debug("api_call", extra={"method": method, "url": url})
        resp = await self._send(method, url, **kwargs)
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteApiError(resp.status_code, resp.text) from e

    async def upload_file(self, name: str, content: bytes, mime_type: str) -> str:
        """Single multipart request; returns the file token."""
        try:
            cfg = self._snapshot()
            url = build_url(cfg, UPLOAD_PATH)
            # no Content-Type here: httpx sets the multipart boundary itself
            resp = await self._send(
                "POST",
                url,
                headers={"Authorization": f"Bearer {cfg.tenant_access_token}"},
                files={"file": (name, content, mime_type)},
                data={"file_name": name},
            )
            payload = resp.json()
        except (ConfigurationError, RemoteApiError, TransportError, ValueError) as e:
            raise AttachmentUploadError(name, str(e)) from e

        token = ((payload or {}).get("data") or {}).get("file_token") if isinstance(payload, dict) else None
        if not token:
            raise AttachmentUploadError(name, "response carries no file_token")
        return token
