"""
TokenClient: fetches media-transport tokens from the token endpoint.

POST TOKEN_URL {appId, appCertificate, channelName, expire, src, types: [1, 2], uid}
-> {"data": {"token": "..."}}. A token is reused for TOKEN_CACHE_SECONDS per (uid, channel).
Without an app certificate the media transport runs tokenless and get_token() returns None.
"""
from __future__ import annotations

import logging
import time

import httpx

from livesync.config import Settings, get_settings

logger = logging.getLogger(__name__)


class TokenClient:
    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        # Injectable for tests (httpx.MockTransport)
        self._transport = transport
        self._cache: dict[tuple[str, str], tuple[str, float]] = {}

    @property
    def enabled(self) -> bool:
        return bool(self._settings.TOKEN_APP_CERTIFICATE and self._settings.TOKEN_URL)

    async def get_token(self, uid: str | int, channel: str) -> str | None:
        if not self.enabled:
            return None
        key = (str(uid), channel)
        cached = self._cache.get(key)
        if cached is not None and time.monotonic() - cached[1] < self._settings.TOKEN_CACHE_SECONDS:
            return cached[0]
        token = await self._fetch(str(uid), channel)
        self._cache[key] = (token, time.monotonic())
        return token

    async def authorization_header(self, uid: str | int, channel: str) -> str:
        """Authorization header value for token-authenticated APIs."""
        token = await self.get_token(uid, channel)
        return f'token="{token or ""}"'

    def clear(self) -> None:
        self._cache.clear()

    async def _fetch(self, uid: str, channel: str) -> str:
        settings = self._settings
        payload = {
            "appId": settings.TOKEN_APP_ID,
            "appCertificate": settings.TOKEN_APP_CERTIFICATE,
            "channelName": channel,
            "expire": settings.TOKEN_EXPIRE_SECONDS,
            "src": "web",
            "types": [1, 2],
            "uid": uid,
        }
        async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
            resp = await client.post(
                settings.TOKEN_URL,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            resp.raise_for_status()
            data = resp.json() or {}
        token = ""
        if isinstance(data.get("data"), dict):
            token = data["data"].get("token") or ""
        if not token:
            logger.warning("Token endpoint returned no token for uid=%s channel=%s", uid, channel)
        else:
            logger.info("Fetched media token for uid=%s channel=%s", uid, channel)
        return token
