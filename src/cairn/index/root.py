"""Root index manager, the single entry point for discovering a collection's latest state."""

from __future__ import annotations

import copy
import logging

from cairn.errors import DecodeError, TransportError
from cairn.index.cache import IndexContext
from cairn.index.codec import ROOT_FILENAME, dumps, loads_object
from cairn.index.models import RootIndex
from cairn.network.base import BlobFile, BlobStore, Gateway

logger = logging.getLogger(__name__)


class RootIndexManager:
    """Resolves and republishes the root index for one history."""

    def __init__(self, context: IndexContext, gateway: Gateway, blob_store: BlobStore) -> None:
        self.context = context
        self.gateway = gateway
        self.blob_store = blob_store

    @property
    def current_cid(self) -> str | None:
        return self.context.root_cid

    async def resolve(self, *, strict: bool = False) -> RootIndex:
        """Fetch the current root index, or an empty one.

        By default any failure (network, status, decode) yields an empty
        root, so callers cannot tell "no such collection" from "root fetch
        failed". Write paths pass ``strict=True`` to get the TransportError
        instead, so a failed fetch can never be republished as an empty root.
        """
        cid = self.context.root_cid
        if not cid:
            return RootIndex()
        snapshot = self.context.root_snapshot
        if snapshot and snapshot[0] == cid:
            return copy.deepcopy(snapshot[1])
        try:
            root = await self._fetch(cid)
        except TransportError as e:
            if strict:
                raise
            logger.warning("Failed to fetch root index %s, starting empty: %s", cid, e)
            return RootIndex()
        self.context.root_snapshot = (cid, copy.deepcopy(root))
        return root

    async def _fetch(self, cid: str) -> RootIndex:
        data = await self.gateway.fetch(cid, ROOT_FILENAME)
        try:
            return RootIndex.from_dict(loads_object(data, what=ROOT_FILENAME))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DecodeError(f"Root index {cid} has an unexpected shape: {e}") from e

    async def publish(self, root: RootIndex) -> str:
        """Upload the root index wholesale and make it current. Upload errors propagate."""
        cid = await self.blob_store.upload([BlobFile(ROOT_FILENAME, dumps(root.to_dict()))])
        self.context.root_cid = cid
        self.context.root_snapshot = (cid, copy.deepcopy(root))
        logger.info("Published root index %s (%d collections)", cid, len(root.collections))
        return cid
