"""Record codec: JSON documents <-> named files.

Records are opaque JSON objects. Only a small envelope (id, room/agent
discriminators, embedding) is read out of them for indexing; the rest is
stored untouched.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Any

from cairn.errors import DecodeError
from cairn.network.base import BlobFile

ROOT_FILENAME = "root.json"
INDEX_FILENAME = "index.json"


def dumps(document: Any) -> bytes:
    """Canonical JSON: sorted keys, no insignificant whitespace, UTF-8."""
    return json.dumps(
        document, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def loads(data: bytes, *, what: str = "document") -> Any:
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Malformed {what}: {e}") from e


def loads_object(data: bytes, *, what: str = "document") -> dict:
    document = loads(data, what=what)
    if not isinstance(document, dict):
        raise DecodeError(f"Malformed {what}: expected a JSON object, got {type(document).__name__}")
    return document


def record_filename(record_id: str) -> str:
    return f"{record_id}.json"


@dataclass
class RecordEnvelope:
    """Typed metadata read out of an opaque record."""

    id: str
    room_id: str | None = None
    agent_id: str | None = None
    embedding: list[float] | None = None


def envelope(record: dict, default_agent_id: str | None = None) -> RecordEnvelope:
    """Read the indexable fields of a record, assigning an id when it has none.

    The record is updated in place with the assigned id so the stored
    payload and its index entry agree.
    """
    record_id = record.get("id")
    if not record_id:
        record_id = str(uuid.uuid4())
        record["id"] = record_id

    embedding = record.get("embedding")
    if embedding is not None:
        embedding = [float(v) for v in embedding]
        if not embedding:
            embedding = None

    return RecordEnvelope(
        id=str(record_id),
        room_id=record.get("roomId"),
        agent_id=record.get("agentId") or default_agent_id,
        embedding=embedding,
    )


def encode_record(record: dict) -> BlobFile:
    """Serialize a record to the single file it is uploaded as."""
    return BlobFile(name=record_filename(record["id"]), data=dumps(record))


def decode_record(data: bytes) -> dict:
    return loads_object(data, what="record")
