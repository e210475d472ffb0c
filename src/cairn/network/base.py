"""Blob store and gateway protocols and shared types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class BlobFile:
    """A named byte payload, uploaded as one entry of a directory."""

    name: str
    data: bytes
    content_type: str = "application/json"


@runtime_checkable
class BlobStore(Protocol):
    """Write side of the network: immutable uploads addressed by CID."""

    async def upload(self, files: list[BlobFile]) -> str:
        """Upload files as one directory and return the directory CID."""
        ...

    async def evict(self, cid: str) -> None:
        """Drop a CID from hot storage.

        Content stays retrievable from the wider network by anyone holding
        the CID.
        """
        ...

    async def close(self) -> None: ...


@runtime_checkable
class Gateway(Protocol):
    """Read side of the network: CID + filename lookups."""

    async def fetch(self, cid: str, filename: str) -> bytes:
        """Return the bytes of ``filename`` inside directory ``cid``.

        Raises GatewayError on any network or status failure.
        """
        ...

    async def close(self) -> None: ...
