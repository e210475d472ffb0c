"""Blob store client speaking the IPFS Kubo RPC API.

Uploads go to ``/api/v0/add`` wrapped in a directory so every file is
addressable as ``{cid}/{name}`` through any gateway. Eviction unpins via
``/api/v0/pin/rm``; the content may still live elsewhere on the network.

Credentials are forwarded as request headers for an authenticating proxy
in front of the RPC port (``X-Auth-Secret`` and ``Authorization``, the same
header pair the Storacha HTTP bridge uses).
"""

from __future__ import annotations

import asyncio
import json
import logging

import aiohttp

from cairn.config import DEFAULT_BLOB_API
from cairn.errors import TransportError, UploadError
from cairn.network.base import BlobFile

logger = logging.getLogger(__name__)


class KuboBlobStore:
    """Uploads directories of named files and evicts CIDs from hot storage."""

    def __init__(
        self,
        api_url: str = DEFAULT_BLOB_API,
        *,
        signing_key: str = "",
        delegation: str = "",
        timeout: float = 60.0,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._headers: dict[str, str] = {}
        if signing_key:
            self._headers["X-Auth-Secret"] = signing_key
        if delegation:
            self._headers["Authorization"] = f"Bearer {delegation}"
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self._headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def upload(self, files: list[BlobFile]) -> str:
        if not files:
            raise ValueError("upload() needs at least one file")

        form = aiohttp.FormData()
        for f in files:
            form.add_field("file", f.data, filename=f.name, content_type=f.content_type)

        params = {"wrap-with-directory": "true", "cid-version": "1", "pin": "true"}
        session = await self._get_session()
        try:
            async with session.post(
                f"{self.api_url}/api/v0/add", data=form, params=params
            ) as response:
                body = await response.text()
                if response.status != 200:
                    raise UploadError(f"Upload failed ({response.status}): {body.strip()[:200]}")
        except aiohttp.ClientError as e:
            raise UploadError(f"Upload failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise UploadError("Upload timed out") from e

        cid = self._directory_cid(body)
        logger.debug("Uploaded %s -> %s", [f.name for f in files], cid)
        return cid

    @staticmethod
    def _directory_cid(body: str) -> str:
        """Pick the wrapping directory out of the NDJSON add response.

        Kubo emits one line per file followed by the directory, whose Name is "".
        """
        directory = None
        for line in body.splitlines():
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError as e:
                raise UploadError(f"Malformed add response line: {line[:120]}") from e
            if entry.get("Name", "") == "":
                directory = entry.get("Hash")
        if not directory:
            raise UploadError("Add response did not include a directory CID")
        return directory

    async def evict(self, cid: str) -> None:
        session = await self._get_session()
        try:
            async with session.post(
                f"{self.api_url}/api/v0/pin/rm", params={"arg": cid}
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    raise TransportError(
                        f"Eviction of {cid} failed ({response.status}): {body.strip()[:200]}"
                    )
        except aiohttp.ClientError as e:
            raise TransportError(f"Eviction of {cid} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError(f"Eviction of {cid} timed out") from e
        logger.debug("Evicted %s from hot storage", cid)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
