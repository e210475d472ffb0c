"""Shared fixtures: an in-memory content-addressed network standing in for IPFS."""

from __future__ import annotations

import hashlib

import pytest

from cairn.config import BlobStoreConfig, CairnConfig, GatewayConfig, IndexConfig
from cairn.core import Cairn
from cairn.errors import GatewayError, TransportError, UploadError
from cairn.network.base import BlobFile


class FakeNetwork:
    """Blob store and gateway over one shared dict.

    Directory CIDs are derived from the uploaded names and bytes, so equal
    uploads get equal CIDs. Eviction only records the request: content
    stays fetchable, like on the real network.
    """

    def __init__(self) -> None:
        self.directories: dict[str, dict[str, bytes]] = {}
        self.uploads: list[list[str]] = []
        self.evicted: list[str] = []
        self.fetches: list[tuple[str, str]] = []
        self.fail_uploads = 0
        self.fail_evictions = False
        self.offline = False
        self.closed = False

    @staticmethod
    def cid_for(files: list[BlobFile]) -> str:
        digest = hashlib.sha256()
        for f in sorted(files, key=lambda f: f.name):
            digest.update(f.name.encode())
            digest.update(b"\0")
            digest.update(f.data)
            digest.update(b"\0")
        return "bafy" + digest.hexdigest()[:52]

    async def upload(self, files: list[BlobFile]) -> str:
        if self.fail_uploads:
            self.fail_uploads -= 1
            raise UploadError("Upload failed (503): injected")
        cid = self.cid_for(files)
        self.directories[cid] = {f.name: f.data for f in files}
        self.uploads.append([f.name for f in files])
        return cid

    async def evict(self, cid: str) -> None:
        if self.fail_evictions:
            raise TransportError(f"Eviction of {cid} failed (500): injected")
        self.evicted.append(cid)

    async def fetch(self, cid: str, filename: str) -> bytes:
        self.fetches.append((cid, filename))
        if self.offline:
            raise GatewayError("Gateway timeout")
        try:
            return self.directories[cid][filename]
        except KeyError:
            raise GatewayError(f"Gateway returned 404 Not Found for {cid}/{filename}", status=404)

    async def close(self) -> None:
        self.closed = True


def make_config(root_cid: str | None = None, **index) -> CairnConfig:
    return CairnConfig(
        gateway=GatewayConfig(url="https://test.gateway.com"),
        blob_store=BlobStoreConfig(signing_key="test-signing-key", delegation="test-delegation"),
        index=IndexConfig(root_cid=root_cid, **index),
    )


def make_memory(memory_id: str, room_id: str = "room-123", agent_id: str = "agent-123", **extra) -> dict:
    memory = {
        "id": memory_id,
        "roomId": room_id,
        "agentId": agent_id,
        "userId": "user-123",
        "content": {"text": f"Memory {memory_id}"},
    }
    memory.update(extra)
    return memory


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def config() -> CairnConfig:
    return make_config()


@pytest.fixture
async def cairn(network: FakeNetwork, config: CairnConfig) -> Cairn:
    c = Cairn(config, blob_store=network, gateway=network)
    await c.init()
    return c
