"""Layered content-addressed index: root -> collection -> records."""

from cairn.index.cache import IndexCache, IndexContext
from cairn.index.chain import ChainReport, verify_chain
from cairn.index.collection import CollectionIndexManager, RemovalResult
from cairn.index.models import (
    CollectionIndex,
    CollectionPointer,
    EmbeddingEntry,
    IndexEntry,
    RootIndex,
)
from cairn.index.root import RootIndexManager

__all__ = [
    "ChainReport",
    "CollectionIndex",
    "CollectionIndexManager",
    "CollectionPointer",
    "EmbeddingEntry",
    "IndexCache",
    "IndexContext",
    "IndexEntry",
    "RemovalResult",
    "RootIndex",
    "RootIndexManager",
    "verify_chain",
]
