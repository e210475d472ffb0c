"""Process-lifetime cache of fetched collection indexes, and per-identity index state."""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field

from cairn.index.models import CollectionIndex, RootIndex

logger = logging.getLogger(__name__)


@dataclass
class CachedIndex:
    cid: str | None
    data: CollectionIndex


class IndexCache:
    """Collection name -> (cid, index). Never evicted; cleared only on refresh.

    Readers get deep copies so in-progress mutations never leak into the
    cached state before a save has succeeded.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CachedIndex] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def names(self) -> list[str]:
        return list(self._entries)

    def get(self, name: str) -> CachedIndex | None:
        cached = self._entries.get(name)
        if cached is None:
            return None
        return CachedIndex(cid=cached.cid, data=copy.deepcopy(cached.data))

    def cid_of(self, name: str) -> str | None:
        cached = self._entries.get(name)
        return cached.cid if cached else None

    def put(self, name: str, cid: str | None, index: CollectionIndex) -> None:
        self._entries[name] = CachedIndex(cid=cid, data=copy.deepcopy(index))
        logger.debug("Cached %s -> %s", name, cid)

    def discard(self, name: str) -> None:
        self._entries.pop(name, None)

    def clear(self) -> None:
        self._entries.clear()


@dataclass
class IndexContext:
    """All mutable index state for one configured identity.

    Owned by a single Cairn instance and handed to both index managers.
    """

    root_cid: str | None = None
    cache: IndexCache = field(default_factory=IndexCache)
    # Last root fetched or published, keyed by its CID; content addressing keeps it valid.
    root_snapshot: tuple[str, RootIndex] | None = None
    root_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _lane_locks: dict[str, asyncio.Lock] = field(default_factory=dict)

    def lane_lock(self, collection: str) -> asyncio.Lock:
        """Per-collection lock serializing read-modify-write cycles."""
        if collection not in self._lane_locks:
            self._lane_locks[collection] = asyncio.Lock()
        return self._lane_locks[collection]
