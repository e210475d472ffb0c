"""Collection index manager.

Owns each collection's ordered entry list, embedding side-table and
sequence counter, and their materialization to and from the blob store.

A save is two uploads: the collection's ``index.json``, then a new
``root.json`` pointing at it. A crash in between leaves the root on the
previous, still consistent, collection index.

Writes are optimistic. The CID a collection had when it was loaded is
compared with the root's pointer right before uploading; on mismatch the
index is reloaded, the caller's change re-applied, and the save retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar

from cairn.errors import ConflictError, DecodeError, TransportError
from cairn.index.cache import CachedIndex, IndexContext
from cairn.index.chain import ChainReport, verify_chain
from cairn.index.codec import INDEX_FILENAME, RecordEnvelope, dumps, encode_record, envelope, loads_object
from cairn.index.models import (
    CollectionIndex,
    CollectionPointer,
    EmbeddingEntry,
    IndexEntry,
    utcnow,
)
from cairn.index.root import RootIndexManager
from cairn.network.base import BlobFile, BlobStore, Gateway

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Applied to a loaded index; a falsy result means nothing changed.
Mutation = Callable[[CollectionIndex], T]

# save() default: expect the CID the collection had when last loaded.
_LOADED = object()


class _StaleIndex(Exception):
    """The root moved on since the index being saved was loaded."""


@dataclass
class RemovalResult:
    """What a removal achieved.

    ``retracted``: the entry left the index (discoverability revoked).
    ``evicted``: the blob store dropped the CID from hot storage. The
    content may still be retrievable elsewhere by anyone holding the CID.
    """

    id: str
    retracted: bool = False
    evicted: bool = False
    cid: str | None = None


class CollectionIndexManager:
    """Load, mutate and save collection indexes for one identity."""

    def __init__(
        self,
        context: IndexContext,
        root: RootIndexManager,
        gateway: Gateway,
        blob_store: BlobStore,
        *,
        write_attempts: int = 3,
    ) -> None:
        self.context = context
        self.root = root
        self.gateway = gateway
        self.blob_store = blob_store
        self.write_attempts = max(1, write_attempts)

    # ── Loading ───────────────────────────────────────────────

    async def load(self, name: str) -> CollectionIndex:
        """Return the collection's index, or a fresh empty one on any failure."""
        return (await self._load_cached(name)).data

    async def _load_cached(self, name: str, *, strict: bool = False) -> CachedIndex:
        cached = self.context.cache.get(name)
        if cached is not None:
            logger.debug("Cache hit for %s (%s)", name, cached.cid)
            return cached

        root = await self.root.resolve(strict=strict)
        cid = root.cid_for(name)
        if cid:
            try:
                index = await self._fetch_index(cid)
            except TransportError as e:
                if strict:
                    raise
                logger.error("Error getting index %s (%s): %s", name, cid, e)
            else:
                self.context.cache.put(name, cid, index)
                return CachedIndex(cid=cid, data=index)

        return CachedIndex(cid=None, data=CollectionIndex())

    async def _fetch_index(self, cid: str) -> CollectionIndex:
        data = await self.gateway.fetch(cid, INDEX_FILENAME)
        try:
            return CollectionIndex.from_dict(loads_object(data, what=INDEX_FILENAME))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DecodeError(f"Collection index {cid} has an unexpected shape: {e}") from e

    # ── Saving ────────────────────────────────────────────────

    async def save(
        self, name: str, index: CollectionIndex, *, expected_cid: str | None | object = _LOADED
    ) -> str:
        """Persist ``index`` and point the root at it.

        ``expected_cid`` is the collection CID the index was derived from,
        ``None`` for a collection that must not exist yet. By default it is
        the CID of the last load. Raises ConflictError if the root has
        moved on since; upload failures propagate and leave the cache untouched.
        """
        if expected_cid is _LOADED:
            expected_cid = self.context.cache.cid_of(name)
        async with self.context.lane_lock(name):
            try:
                return await self._save(name, index, expected_cid)
            except _StaleIndex as e:
                logger.warning("Refusing to save %s: %s", name, e)
                self.context.cache.discard(name)
                raise ConflictError(name, 1) from e

    async def _save(self, name: str, index: CollectionIndex, expected_cid: str | None) -> str:
        index.sort_chronologically()
        if index.last_sequence is None:
            index.last_sequence = 0
        index.last_sequence = max(index.last_sequence, index.max_sequence())
        index.last_updated = utcnow()

        async with self.context.root_lock:
            root = await self.root.resolve(strict=True)
            current = root.cid_for(name)
            if current != expected_cid:
                raise _StaleIndex(f"{name}: expected {expected_cid}, root has {current}")

            cid = await self.blob_store.upload([BlobFile(INDEX_FILENAME, dumps(index.to_dict()))])
            root.collections[name] = CollectionPointer(cid=cid, last_updated=utcnow())
            await self.root.publish(root)
            self.context.cache.put(name, cid, index)

        logger.info("Saved %s -> %s (%d items)", name, cid, len(index.items))
        return cid

    async def commit(self, name: str, mutate: Mutation[T]) -> T:
        """Run load -> mutate -> save under the collection's lane lock, retrying on conflict.

        The load is strict: an unreachable index raises TransportError
        rather than being overwritten by an empty one.
        """
        async with self.context.lane_lock(name):
            for attempt in range(1, self.write_attempts + 1):
                base = await self._load_cached(name, strict=True)
                result = mutate(base.data)
                if not result:
                    return result
                try:
                    await self._save(name, base.data, base.cid)
                    return result
                except _StaleIndex as e:
                    logger.warning(
                        "Concurrent update on %s (attempt %d/%d): %s",
                        name, attempt, self.write_attempts, e,
                    )
                    self.context.cache.discard(name)
            raise ConflictError(name, self.write_attempts)

    # ── Records ───────────────────────────────────────────────

    async def create_record(
        self,
        name: str,
        record: dict,
        *,
        table_name: str | None = None,
        default_agent_id: str | None = None,
    ) -> IndexEntry:
        """Upload a record as its own file and append it to the collection."""
        meta = envelope(record, default_agent_id)
        blob = encode_record(record)
        cid = await self.blob_store.upload([blob])
        logger.debug("Uploaded record %s -> %s", meta.id, cid)

        def append(index: CollectionIndex) -> IndexEntry:
            return _append_entry(index, meta, cid, blob.name, table_name)

        entry = await self.commit(name, append)
        logger.info("Record %s added to %s (sequence %s)", meta.id, name, entry.sequence)
        return entry

    async def retract_record(self, name: str, record_id: str) -> IndexEntry | None:
        """Drop the record from the index. Returns the removed entry, or None if absent."""
        entry = await self.commit(name, lambda index: index.drop(record_id))
        if entry is None:
            logger.warning("Record %s not found in %s", record_id, name)
        return entry

    async def retract_where(self, name: str, predicate: Callable[[IndexEntry], bool]) -> list[IndexEntry]:
        """Drop every entry matching ``predicate`` in a single save."""

        def drop_matching(index: CollectionIndex) -> list[IndexEntry]:
            removed = [item for item in index.items if predicate(item)]
            for item in removed:
                index.drop(item.id)
            return removed

        return await self.commit(name, drop_matching)

    async def evict(self, cid: str) -> bool:
        """Best-effort hot-storage eviction. Failures are logged, not raised."""
        try:
            await self.blob_store.evict(cid)
            return True
        except TransportError as e:
            logger.warning("Could not evict %s from hot storage: %s", cid, e)
            return False

    async def remove_record(self, name: str, record_id: str) -> RemovalResult:
        """Retract the record, then ask the blob store to evict its CID.

        Removing an absent record is a reported no-op.
        """
        result = RemovalResult(id=record_id)
        entry = await self.retract_record(name, record_id)
        if entry is None:
            return result
        result.retracted = True
        result.cid = entry.cid
        result.evicted = await self.evict(entry.cid)
        logger.info("Record %s removed from %s", record_id, name)
        return result

    async def find_entry(
        self, record_id: str, *, prefix: str = ""
    ) -> tuple[str, IndexEntry] | None:
        """Locate a record by id.

        Cached collections are scanned first; collections the root lists
        but that have not been loaded yet are loaded and scanned after.
        """
        for name in self.context.cache.names():
            if not name.startswith(prefix):
                continue
            entry = (await self.load(name)).find(record_id)
            if entry is not None:
                return name, entry

        root = await self.root.resolve()
        for name in root.collections:
            if not name.startswith(prefix) or name in self.context.cache:
                continue
            entry = (await self.load(name)).find(record_id)
            if entry is not None:
                return name, entry
        return None

    async def fetch_record(self, record_id: str, *, prefix: str = "") -> bytes | None:
        """Raw bytes of a record, or None if unknown or unreachable."""
        found = await self.find_entry(record_id, prefix=prefix)
        if found is None:
            return None
        _, entry = found
        try:
            return await self.gateway.fetch(entry.cid, entry.filename)
        except TransportError as e:
            logger.error("Error fetching record %s (%s): %s", record_id, entry.cid, e)
            return None

    async def fetch_entries(self, entries: Iterable[IndexEntry]) -> list[bytes]:
        """Fetch several records concurrently, in order. Any failure propagates."""
        return list(
            await asyncio.gather(*(self.gateway.fetch(e.cid, e.filename) for e in entries))
        )

    async def verify(self, name: str) -> ChainReport:
        return verify_chain(await self.load(name))


def _append_entry(
    index: CollectionIndex,
    meta: RecordEnvelope,
    cid: str,
    filename: str,
    table_name: str | None,
) -> IndexEntry:
    """Append (or replace) the entry for ``meta.id`` at the end of the chain."""
    now = utcnow()
    sequence = index.next_sequence()
    if index.root_cid is None and index.items:
        # Entries written before sequencing; the oldest one starts the chain.
        index.root_cid = index.items[0].cid
    replaced = index.drop(meta.id)
    tail = index.tail()

    entry = IndexEntry(
        id=meta.id,
        cid=cid,
        filename=filename,
        created=replaced.created if replaced else now,
        updated=now,
        room_id=meta.room_id,
        table_name=table_name,
        agent_id=meta.agent_id,
        sequence=sequence,
        previous_cid=tail.cid if tail else None,
    )
    index.items.append(entry)
    index.last_sequence = sequence
    if index.root_cid is None:
        index.root_cid = cid

    if meta.embedding is not None:
        index.embeddings = index.embeddings or []
        index.embeddings.append(EmbeddingEntry(id=meta.id, vector=meta.embedding))
    return entry
