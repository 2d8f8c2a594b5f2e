"""Authenticated HTTP client for supplier APIs."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from vascatalog.errors import RequestFailed, SupplierApiError
from vascatalog.ingest.auth import TokenManager
from vascatalog.utils.retry import retry_async

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30.0
AUTH_FAILURE_STATUSES = {401, 403}
BODY_METHODS = {"POST", "PUT", "PATCH"}


class SupplierClient:
    def __init__(
        self,
        token_manager: TokenManager,
        *,
        session: httpx.AsyncClient | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.token_manager = token_manager
        self.config = token_manager.config
        self._session = session or httpx.AsyncClient(timeout=timeout)
        self._timeout = timeout

    async def close(self) -> None:
        await self._session.aclose()

    async def request(self, method: str, path: str, body: Any = None) -> Any:
        """Call ``path`` under the supplier's API base and return decoded JSON.

        An authorization failure (401/403) drops the cached token and retries
        exactly once with a fresh one.
        """
        url = f"{self.config.api_base}/{path.lstrip('/')}"
        method = method.upper()
        response = await self._send(method, url, body)
        if response.status_code in AUTH_FAILURE_STATUSES:
            logger.warning(
                "%s %s returned %s; re-authenticating and retrying once",
                method,
                url,
                response.status_code,
            )
            self.token_manager.invalidate()
            await self.token_manager.request_access_token()
            response = await self._send(method, url, body)
        if not response.is_success:
            raise RequestFailed(
                f"{method} {url} failed with status {response.status_code}",
                status=response.status_code,
                body=_body(response),
            )
        payload = _body(response)
        _raise_for_envelope(payload)
        return payload

    async def get(self, path: str) -> Any:
        return await self.request("GET", path)

    async def _send(self, method: str, url: str, body: Any) -> httpx.Response:
        token = await self.token_manager.get_access_token()
        headers = {
            "Authorization": token.authorization,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        kwargs: dict[str, Any] = {"headers": headers, "timeout": self._timeout}
        if body is not None and method in BODY_METHODS:
            kwargs["json"] = body
        try:
            return await retry_async(self._session.request)(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise RequestFailed(f"{method} {url} failed: {exc}") from exc


def _body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _raise_for_envelope(payload: Any) -> None:
    if not isinstance(payload, dict) or "errorCode" not in payload:
        return
    code = payload.get("errorCode")
    if code in (0, "0", None):
        return
    raise SupplierApiError(code, payload.get("errorMessage"), body=payload)
