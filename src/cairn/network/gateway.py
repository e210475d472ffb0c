"""HTTP gateway client: ``GET {base}/{cid}/{filename}``."""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from cairn.config import DEFAULT_GATEWAY
from cairn.errors import GatewayError

logger = logging.getLogger(__name__)


class GatewayClient:
    """Fetches named files out of CID-addressed directories. Stateless apart from the session."""

    def __init__(self, base_url: str = DEFAULT_GATEWAY, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    def url_for(self, cid: str, filename: str) -> str:
        return f"{self.base_url}/{cid}/{filename}"

    async def fetch(self, cid: str, filename: str) -> bytes:
        url = self.url_for(cid, filename)
        session = await self._get_session()
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    raise GatewayError(
                        f"Gateway returned {response.status} {response.reason} for {url}",
                        status=response.status,
                    )
                data = await response.read()
        except aiohttp.ClientError as e:
            raise GatewayError(f"Failed to fetch {url}: {e}") from e
        except asyncio.TimeoutError as e:
            raise GatewayError(f"Timed out fetching {url}") from e
        logger.debug("Fetched %s (%d bytes)", url, len(data))
        return data

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
