"""Index data model and its JSON form.

Persisted documents use camelCase keys so indexes written by other
implementations of the same layout stay readable:

    root.json   {"collections": {name: {"cid", "lastUpdated"}}}
    index.json  {"items": [...], "lastUpdated", "lastSequence"?, "rootCid"?, "embeddings"?}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO8601 string (``Z`` suffix allowed) or epoch milliseconds."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value:
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return utcnow()


@dataclass
class IndexEntry:
    """Metadata for one stored record inside a collection index."""

    id: str
    cid: str
    filename: str
    created: datetime = field(default_factory=utcnow)
    updated: datetime = field(default_factory=utcnow)
    room_id: str | None = None
    table_name: str | None = None
    agent_id: str | None = None
    sequence: int | None = None
    previous_cid: str | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "id": self.id,
            "cid": self.cid,
            "filename": self.filename,
            "created": format_timestamp(self.created),
            "updated": format_timestamp(self.updated),
        }
        optional = {
            "roomId": self.room_id,
            "tableName": self.table_name,
            "agentId": self.agent_id,
            "sequence": self.sequence,
            "previousCid": self.previous_cid,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict) -> IndexEntry:
        sequence = data.get("sequence")
        return cls(
            id=data["id"],
            cid=data["cid"],
            filename=data["filename"],
            created=parse_timestamp(data.get("created")),
            updated=parse_timestamp(data.get("updated")),
            room_id=data.get("roomId"),
            table_name=data.get("tableName"),
            agent_id=data.get("agentId"),
            sequence=int(sequence) if sequence is not None else None,
            previous_cid=data.get("previousCid"),
        )


@dataclass
class EmbeddingEntry:
    """Vector attached to the index entry with the same id."""

    id: str
    vector: list[float]

    def to_dict(self) -> dict:
        return {"id": self.id, "vector": list(self.vector)}

    @classmethod
    def from_dict(cls, data: dict) -> EmbeddingEntry:
        return cls(id=data["id"], vector=[float(v) for v in data.get("vector", [])])


@dataclass
class CollectionIndex:
    """Ordered record metadata for one collection, plus its embedding side-table."""

    items: list[IndexEntry] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)
    last_sequence: int | None = None
    root_cid: str | None = None
    embeddings: list[EmbeddingEntry] | None = None

    def find(self, record_id: str) -> IndexEntry | None:
        for item in self.items:
            if item.id == record_id:
                return item
        return None

    def max_sequence(self) -> int:
        return max((item.sequence or 0 for item in self.items), default=0)

    def next_sequence(self) -> int:
        return max(self.last_sequence or 0, self.max_sequence()) + 1

    def tail(self) -> IndexEntry | None:
        """Entry with the highest sequence, i.e. the most recent write."""
        if not self.items:
            return None
        # Reversed so that among unsequenced entries the last appended wins.
        return max(reversed(self.items), key=lambda item: item.sequence or 0)

    def sort_chronologically(self) -> None:
        # Stable: entries without a sequence keep their insertion order at the front.
        self.items.sort(key=lambda item: item.sequence or 0)

    def drop(self, record_id: str) -> IndexEntry | None:
        """Remove the entry and its embedding; return the removed entry."""
        entry = self.find(record_id)
        if entry is None:
            return None
        self.items = [item for item in self.items if item.id != record_id]
        if self.embeddings is not None:
            self.embeddings = [e for e in self.embeddings if e.id != record_id]
        return entry

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "items": [item.to_dict() for item in self.items],
            "lastUpdated": format_timestamp(self.last_updated),
        }
        if self.last_sequence is not None:
            data["lastSequence"] = self.last_sequence
        if self.root_cid is not None:
            data["rootCid"] = self.root_cid
        if self.embeddings is not None:
            data["embeddings"] = [e.to_dict() for e in self.embeddings]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> CollectionIndex:
        embeddings = data.get("embeddings")
        last_sequence = data.get("lastSequence")
        return cls(
            items=[IndexEntry.from_dict(item) for item in data.get("items", [])],
            last_updated=parse_timestamp(data.get("lastUpdated")),
            last_sequence=int(last_sequence) if last_sequence is not None else None,
            root_cid=data.get("rootCid"),
            embeddings=(
                [EmbeddingEntry.from_dict(e) for e in embeddings] if embeddings is not None else None
            ),
        )


@dataclass
class CollectionPointer:
    """Root index entry: where a collection's latest index lives."""

    cid: str
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {"cid": self.cid, "lastUpdated": format_timestamp(self.last_updated)}

    @classmethod
    def from_dict(cls, data: dict) -> CollectionPointer:
        return cls(cid=data["cid"], last_updated=parse_timestamp(data.get("lastUpdated")))


@dataclass
class RootIndex:
    """Collection name -> latest collection index CID."""

    collections: dict[str, CollectionPointer] = field(default_factory=dict)

    def cid_for(self, name: str) -> str | None:
        pointer = self.collections.get(name)
        return pointer.cid if pointer else None

    def to_dict(self) -> dict:
        return {"collections": {name: p.to_dict() for name, p in self.collections.items()}}

    @classmethod
    def from_dict(cls, data: dict) -> RootIndex:
        return cls(
            collections={
                name: CollectionPointer.from_dict(p)
                for name, p in (data.get("collections") or {}).items()
            }
        )
