"""OAuth2 client-credentials token handling for supplier APIs."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx
import pendulum

from vascatalog.errors import AuthenticationError, ConfigurationError
from vascatalog.ingest.models import SupplierConfig
from vascatalog.utils.dates import isoformat, utc_now

logger = logging.getLogger(__name__)

REFRESH_BUFFER_SECONDS = 300
TOKEN_TIMEOUT = 10.0

_TOKEN_KEYS = ("access_token", "token", "accessToken")
_EXPIRY_KEYS = ("expires_in", "expires", "expiresIn")


@dataclass(slots=True)
class Token:
    access_token: str
    token_type: str
    expires_in: int
    issued_at: pendulum.DateTime
    expires_at: pendulum.DateTime

    @property
    def authorization(self) -> str:
        return f"Bearer {self.access_token}"


class TokenManager:
    """Caches one supplier's access token and renews it before expiry.

    The cached token is considered stale ``REFRESH_BUFFER_SECONDS`` before the
    supplier's own expiry. Refreshes are serialized behind a lock so that
    concurrent callers trigger a single token request.
    """

    def __init__(
        self,
        config: SupplierConfig,
        *,
        session: httpx.AsyncClient | None = None,
        clock: Callable[[], pendulum.DateTime] = utc_now,
        refresh_buffer: int = REFRESH_BUFFER_SECONDS,
        timeout: float = TOKEN_TIMEOUT,
    ) -> None:
        if config.live_integration and not config.has_credentials:
            raise ConfigurationError(
                f"{config.code}_CLIENT_ID and {config.code}_CLIENT_SECRET are required for live integration"
            )
        if not config.live_integration:
            logger.info("%s token manager running without live integration", config.code)
        self.config = config
        self._session = session or httpx.AsyncClient(timeout=timeout)
        self._clock = clock
        self._refresh_buffer = refresh_buffer
        self._timeout = timeout
        self._token: Token | None = None
        self._lock = asyncio.Lock()

    @property
    def token(self) -> Token | None:
        return self._token

    async def close(self) -> None:
        await self._session.aclose()

    def is_valid(self) -> bool:
        return self._token is not None and self._clock() < self._token.expires_at

    def invalidate(self) -> None:
        self._token = None

    async def get_access_token(self) -> Token:
        if self.is_valid():
            return self._token  # type: ignore[return-value]
        async with self._lock:
            if not self.is_valid():
                await self.request_access_token()
        return self._token  # type: ignore[return-value]

    async def request_access_token(self) -> Token:
        self._token = None
        if not self.config.has_credentials:
            raise AuthenticationError(f"No client credentials configured for {self.config.code}")
        url = self.config.resolved_token_url
        logger.info("Requesting %s access token from %s", self.config.code, url)
        form = {
            "grant_type": "client_credentials",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }
        try:
            response = await self._session.post(
                url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Token request to {url} failed: {exc}") from exc
        if not response.is_success:
            raise AuthenticationError(
                f"Token request failed with status {response.status_code}: {response.text[:500]}"
            )
        access_token, expires_in, token_type = _parse_token_payload(response)
        issued_at = self._clock()
        buffer = self._refresh_buffer
        if expires_in <= buffer:
            # short-lived token: renew halfway through its life
            buffer = expires_in // 2
            logger.warning(
                "%s token lifetime %ss is within the %ss refresh buffer; renewing after %ss",
                self.config.code,
                expires_in,
                self._refresh_buffer,
                expires_in - buffer,
            )
        token = Token(
            access_token=access_token,
            token_type=token_type,
            expires_in=expires_in,
            issued_at=issued_at,
            expires_at=issued_at.add(seconds=expires_in - buffer),
        )
        self._token = token
        logger.info("%s token valid until %s", self.config.code, isoformat(token.expires_at))
        return token

    async def health_check(self) -> dict[str, Any]:
        try:
            token = await self.get_access_token()
        except AuthenticationError as exc:
            return {"status": "unhealthy", "error": str(exc), "api_url": self.config.api_base}
        return {
            "status": "healthy",
            "token_valid": self.is_valid(),
            "expires_at": isoformat(token.expires_at),
            "api_url": self.config.api_base,
        }


def _parse_token_payload(response: httpx.Response) -> tuple[str, int, str]:
    text = response.text
    if not text or not text.strip():
        raise AuthenticationError("Empty token response")
    try:
        payload: Any = response.json()
    except ValueError as exc:
        raise AuthenticationError(f"Invalid token response format: {text[:200]}") from exc
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise AuthenticationError(f"Invalid token response format: {payload[:200]}") from exc
    if not isinstance(payload, dict):
        raise AuthenticationError(f"Invalid token response: {text[:200]}")
    access_token = _first_present(payload, _TOKEN_KEYS)
    expires_in = _first_present(payload, _EXPIRY_KEYS)
    if not access_token or not expires_in:
        raise AuthenticationError("Token response missing access_token or expires_in")
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError) as exc:
        raise AuthenticationError(f"Invalid expires_in value {expires_in!r}") from exc
    if seconds <= 0:
        raise AuthenticationError(f"Invalid expires_in value {expires_in!r}")
    return str(access_token), seconds, str(payload.get("token_type") or "Bearer")


def _first_present(payload: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value:
            return value
    return None
