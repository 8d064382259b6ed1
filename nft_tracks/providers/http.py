from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Optional

import aiohttp

from ..models import NetworkError

logger = logging.getLogger(__name__)

USER_AGENT = "nft-tracks/0.1"


class JsonHttpClient:
    """Thin aiohttp wrapper that returns decoded JSON or raises ``NetworkError``."""

    def __init__(
        self,
        *,
        timeout_seconds: float,
        headers: Optional[Mapping[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        self._headers.update(headers or {})
        self._session = session
        self._owns_session = session is None

    async def get_json(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        session = self._ensure_session()
        request_headers = {**self._headers, **(headers or {})}
        try:
            async with session.get(url, params=params, headers=request_headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise NetworkError(f"HTTP {response.status} from {url}: {body[:200]}")
                text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise NetworkError(f"Request to {url} failed: {exc}") from exc
        try:
            return json.loads(text) if text else None
        except json.JSONDecodeError as exc:
            raise NetworkError(f"Invalid JSON from {url}: {exc}") from exc

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "JsonHttpClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
