"""Cairn: memory store over the content-addressed index.

Responsibilities:
1. Fail fast on missing credentials before any write can be attempted
2. Own one IndexContext (cache + current root CID) per configured identity
3. Map memory tables to ``memories-<table>`` collections
4. Degrade read paths to empty results; propagate write failures
5. Expose the current root CID so another party can read this history
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from cairn.config import CairnConfig
from cairn.errors import CairnError, ConfigurationError, TransportError
from cairn.index.cache import IndexContext
from cairn.index.chain import ChainReport
from cairn.index.codec import decode_record
from cairn.index.collection import CollectionIndexManager, RemovalResult
from cairn.index.models import IndexEntry
from cairn.index.root import RootIndexManager
from cairn.index.search import rank
from cairn.network.base import BlobStore, Gateway

logger = logging.getLogger(__name__)

MEMORY_PREFIX = "memories-"
DEFAULT_TABLE = "messages"


def collection_name(table_name: str) -> str:
    return f"{MEMORY_PREFIX}{table_name}"


class Cairn:
    """Memory store for one identity, backed by a layered content-addressed index."""

    def __init__(
        self,
        config: CairnConfig,
        *,
        blob_store: BlobStore | None = None,
        gateway: Gateway | None = None,
    ) -> None:
        self.config = config
        self.context = IndexContext(root_cid=config.index.root_cid)
        self._blob_store = blob_store
        self._gateway = gateway
        self._owned: list = []
        self._root: RootIndexManager | None = None
        self._collections: CollectionIndexManager | None = None

    # ── Lifecycle ─────────────────────────────────────────────

    async def init(self) -> None:
        """Validate credentials and build the network clients.

        Raises ConfigurationError before any client exists if the signing
        key or the delegation proof is missing.
        """
        logger.info("Initializing cairn (gateway=%s)", self.config.gateway.url)
        blob_config = self.config.blob_store
        if not blob_config.signing_key:
            raise ConfigurationError("Signing key is missing from the configuration")
        if not blob_config.delegation:
            raise ConfigurationError("Delegation is missing from the configuration")

        if self._gateway is None:
            from cairn.network.gateway import GatewayClient

            self._gateway = GatewayClient(self.config.gateway.url, timeout=self.config.gateway.timeout)
            self._owned.append(self._gateway)
        if self._blob_store is None:
            from cairn.network.kubo import KuboBlobStore

            self._blob_store = KuboBlobStore(
                blob_config.api_url,
                signing_key=blob_config.signing_key,
                delegation=blob_config.delegation,
                timeout=blob_config.timeout,
            )
            self._owned.append(self._blob_store)

        self._root = RootIndexManager(self.context, self._gateway, self._blob_store)
        self._collections = CollectionIndexManager(
            self.context,
            self._root,
            self._gateway,
            self._blob_store,
            write_attempts=self.config.index.write_attempts,
        )
        logger.info("Cairn initialized (root=%s)", self.context.root_cid or "<new>")

    async def close(self) -> None:
        """Close the clients init() built; injected ones belong to the caller."""
        for client in self._owned:
            close = getattr(client, "close", None)
            if close and callable(close):
                await close()

    @property
    def collections(self) -> CollectionIndexManager:
        if self._collections is None:
            raise CairnError("Cairn is not initialized. Call init() first.")
        return self._collections

    # ── Root sharing ──────────────────────────────────────────

    def get_root_cid(self) -> str | None:
        """CID of the latest root index; hand it to another party to share this history."""
        return self.context.root_cid

    def refresh(self, root_cid: str | None = None) -> None:
        """Drop cached indexes so the next read re-resolves from the root.

        Pass ``root_cid`` to follow a newer root published by another party.
        """
        if root_cid:
            self.context.root_cid = root_cid
        self.context.cache.clear()
        logger.info("Index cache cleared (root=%s)", self.context.root_cid)

    # ── Writes ────────────────────────────────────────────────

    async def create_memory(self, memory: dict, table_name: str, unique: bool = False) -> IndexEntry:
        """Store a memory and index it under ``table_name``. Errors propagate."""
        try:
            return await self.collections.create_record(
                collection_name(table_name),
                memory,
                table_name=table_name,
                default_agent_id=self.config.index.agent_id,
            )
        except CairnError as e:
            logger.error("Error creating memory: %s", e)
            raise

    async def remove_memory(self, memory_id: str, table_name: str) -> RemovalResult:
        """Retract a memory from the index and evict it from hot storage.

        The content stays retrievable by CID from the wider network; only
        its discoverability through this index is revoked.
        """
        try:
            return await self.collections.remove_record(collection_name(table_name), memory_id)
        except CairnError as e:
            logger.error("Error removing memory: %s", e)
            raise

    async def remove_all_memories(self, room_id: str, table_name: str) -> list[RemovalResult]:
        name = collection_name(table_name)
        removed = await self.collections.retract_where(name, lambda item: item.room_id == room_id)
        results = []
        for entry in removed:
            evicted = await self.collections.evict(entry.cid)
            results.append(RemovalResult(id=entry.id, retracted=True, evicted=evicted, cid=entry.cid))
        logger.info("Removed %d memories of room %s from %s", len(results), room_id, name)
        return results

    # ── Reads ─────────────────────────────────────────────────

    async def _fetch_memories(self, entries: Sequence[IndexEntry]) -> list[dict]:
        """All or nothing: one failed fetch empties the result."""
        if not entries:
            return []
        try:
            payloads = await self.collections.fetch_entries(entries)
            return [decode_record(data) for data in payloads]
        except TransportError as e:
            logger.error("Error fetching memories: %s", e)
            return []

    async def get_memories(
        self,
        room_id: str,
        table_name: str,
        agent_id: str | None = None,
        count: int | None = None,
        start: int | None = None,
        end: int | None = None,
        unique: bool = False,
    ) -> list[dict]:
        """Memories of one room in write order, optionally paginated."""
        index = await self.collections.load(collection_name(table_name))
        items = [
            item
            for item in index.items
            if item.room_id == room_id and (agent_id is None or item.agent_id == agent_id)
        ]
        start = start or 0
        end = end if end is not None else len(items)
        count = count if count is not None else end - start
        return await self._fetch_memories(items[start : min(start + count, end)])

    async def get_memory_by_id(self, memory_id: str) -> dict | None:
        data = await self.collections.fetch_record(memory_id, prefix=MEMORY_PREFIX)
        if data is None:
            return None
        try:
            return decode_record(data)
        except TransportError as e:
            logger.error("Error decoding memory %s: %s", memory_id, e)
            return None

    async def get_memories_by_ids(
        self, memory_ids: Sequence[str], table_name: str | None = None
    ) -> list[dict]:
        """Memories for the given ids, in the order asked; unknown ids are skipped."""
        if table_name is not None:
            index = await self.collections.load(collection_name(table_name))
            entries = [e for e in (index.find(i) for i in memory_ids) if e is not None]
            return await self._fetch_memories(entries)

        found = await asyncio.gather(
            *(self.collections.find_entry(i, prefix=MEMORY_PREFIX) for i in memory_ids)
        )
        return await self._fetch_memories([hit[1] for hit in found if hit is not None])

    async def get_memories_by_room_ids(
        self,
        table_name: str,
        room_ids: Sequence[str],
        agent_id: str | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        rooms = set(room_ids)
        index = await self.collections.load(collection_name(table_name))
        items = [
            item
            for item in index.items
            if item.room_id in rooms and (agent_id is None or item.agent_id == agent_id)
        ]
        if limit is not None:
            items = items[:limit]
        return await self._fetch_memories(items)

    async def count_memories(
        self, room_id: str, unique: bool = False, table_name: str = DEFAULT_TABLE
    ) -> int:
        index = await self.collections.load(collection_name(table_name))
        return sum(1 for item in index.items if item.room_id == room_id)

    # ── Similarity search ─────────────────────────────────────

    async def _search(
        self,
        table_name: str,
        embedding: Sequence[float],
        threshold: float,
        limit: int,
        room_id: str | None,
        agent_id: str | None,
    ) -> list[dict]:
        index = await self.collections.load(collection_name(table_name))
        if not index.embeddings:
            return []

        by_id = {item.id: item for item in index.items}
        entries = []
        for match in rank(embedding, index.embeddings, threshold, limit):
            item = by_id.get(match.id)
            if item is None:
                continue
            if room_id is not None and item.room_id != room_id:
                continue
            if agent_id is not None and item.agent_id != agent_id:
                continue
            entries.append(item)
        return await self._fetch_memories(entries)

    async def search_memories(
        self,
        table_name: str,
        room_id: str,
        embedding: Sequence[float],
        match_threshold: float,
        match_count: int,
        agent_id: str | None = None,
        unique: bool = False,
    ) -> list[dict]:
        """Memories of one room most similar to ``embedding``, best first."""
        return await self._search(
            table_name, embedding, match_threshold, match_count, room_id, agent_id
        )

    async def search_memories_by_embedding(
        self,
        embedding: Sequence[float],
        table_name: str,
        match_threshold: float = 0.0,
        count: int = 10,
        room_id: str | None = None,
        agent_id: str | None = None,
        unique: bool = False,
    ) -> list[dict]:
        return await self._search(table_name, embedding, match_threshold, count, room_id, agent_id)

    # ── Integrity ─────────────────────────────────────────────

    async def verify_collection(self, table_name: str) -> ChainReport:
        return await self.collections.verify(collection_name(table_name))
