"""Tests for the index data model, its JSON form, and the record codec."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from cairn.errors import DecodeError
from cairn.index.codec import decode_record, dumps, encode_record, envelope, loads_object
from cairn.index.models import (
    CollectionIndex,
    CollectionPointer,
    EmbeddingEntry,
    IndexEntry,
    RootIndex,
    format_timestamp,
    parse_timestamp,
)

T0 = datetime(2025, 3, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)


def entry(record_id: str, sequence: int | None, **kwargs) -> IndexEntry:
    return IndexEntry(
        id=record_id,
        cid=f"cid-{record_id}",
        filename=f"{record_id}.json",
        created=T0,
        updated=T0,
        sequence=sequence,
        **kwargs,
    )


class TestTimestamps:
    def test_format_uses_z_suffix(self):
        assert format_timestamp(T0) == "2025-03-01T12:00:00.250000Z"

    def test_parse_javascript_date(self):
        parsed = parse_timestamp("2025-03-01T12:00:00.250Z")
        assert parsed == T0

    def test_parse_epoch_millis(self):
        assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_timestamp("2025-03-01T12:00:00.250") == T0


class TestRoundTrip:
    def test_root_index(self):
        root = RootIndex(
            collections={
                "memories-a": CollectionPointer(cid="bafya", last_updated=T0),
                "memories-b": CollectionPointer(cid="bafyb", last_updated=T0),
            }
        )
        restored = RootIndex.from_dict(json.loads(dumps(root.to_dict())))
        assert restored == root

    def test_collection_index(self):
        index = CollectionIndex(
            items=[
                entry("m1", 1, room_id="r", agent_id="a", table_name="t"),
                entry("m2", 2, room_id="r", previous_cid="cid-m1"),
            ],
            last_updated=T0,
            last_sequence=2,
            root_cid="cid-m1",
            embeddings=[EmbeddingEntry(id="m1", vector=[0.5, 0.25])],
        )
        restored = CollectionIndex.from_dict(json.loads(dumps(index.to_dict())))
        assert restored == index

    def test_optional_fields_are_omitted(self):
        data = CollectionIndex(items=[entry("m1", None)], last_updated=T0).to_dict()
        assert set(data) == {"items", "lastUpdated"}
        assert set(data["items"][0]) == {"id", "cid", "filename", "created", "updated"}

    def test_camel_case_keys(self):
        data = entry("m1", 3, room_id="r", agent_id="a", previous_cid="p").to_dict()
        assert data["roomId"] == "r"
        assert data["agentId"] == "a"
        assert data["previousCid"] == "p"
        assert data["sequence"] == 3

    def test_reads_legacy_index_without_sequences(self):
        legacy = {
            "items": [
                {
                    "id": "m1",
                    "cid": "bafy1",
                    "filename": "m1.json",
                    "roomId": "r",
                    "tableName": "t",
                    "created": "2025-01-01T00:00:00.000Z",
                    "updated": "2025-01-01T00:00:00.000Z",
                }
            ],
            "lastUpdated": "2025-01-01T00:00:00.000Z",
        }
        index = CollectionIndex.from_dict(legacy)
        assert index.items[0].sequence is None
        assert index.last_sequence is None
        assert index.embeddings is None


class TestCollectionIndex:
    def test_sort_chronologically(self):
        index = CollectionIndex(items=[entry("c", 3), entry("a", 1), entry("b", 2)])
        index.sort_chronologically()
        assert [i.id for i in index.items] == ["a", "b", "c"]

    def test_missing_sequence_sorts_first(self):
        index = CollectionIndex(items=[entry("b", 1), entry("legacy", None)])
        index.sort_chronologically()
        assert [i.id for i in index.items] == ["legacy", "b"]

    def test_next_sequence_respects_last_sequence(self):
        index = CollectionIndex(items=[entry("a", 1)], last_sequence=7)
        assert index.next_sequence() == 8

    def test_next_sequence_respects_items(self):
        index = CollectionIndex(items=[entry("a", 4)], last_sequence=0)
        assert index.next_sequence() == 5

    def test_tail_of_legacy_items_is_last_appended(self):
        index = CollectionIndex(items=[entry("a", None), entry("b", None)])
        assert index.tail().id == "b"

    def test_drop_removes_embedding(self):
        index = CollectionIndex(
            items=[entry("a", 1), entry("b", 2)],
            embeddings=[EmbeddingEntry("a", [1.0]), EmbeddingEntry("b", [1.0])],
        )
        dropped = index.drop("a")
        assert dropped.id == "a"
        assert [i.id for i in index.items] == ["b"]
        assert [e.id for e in index.embeddings] == ["b"]

    def test_drop_missing(self):
        index = CollectionIndex(items=[entry("a", 1)])
        assert index.drop("zzz") is None
        assert len(index.items) == 1


class TestCodec:
    def test_canonical_json_is_stable(self):
        assert dumps({"b": 1, "a": [1, 2]}) == b'{"a":[1,2],"b":1}'

    def test_canonical_json_keeps_unicode(self):
        assert dumps({"text": "héllo"}) == '{"text":"héllo"}'.encode("utf-8")

    def test_envelope_assigns_id(self):
        record = {"roomId": "r", "content": {"text": "x"}}
        meta = envelope(record)
        assert meta.id
        assert record["id"] == meta.id

    def test_envelope_default_agent(self):
        meta = envelope({"id": "m1"}, default_agent_id="agent-x")
        assert meta.agent_id == "agent-x"
        assert envelope({"id": "m1", "agentId": "own"}, "agent-x").agent_id == "own"

    def test_envelope_empty_embedding_is_none(self):
        assert envelope({"id": "m1", "embedding": []}).embedding is None

    def test_encode_record_filename(self):
        blob = encode_record({"id": "m1", "content": {}})
        assert blob.name == "m1.json"
        assert decode_record(blob.data) == {"id": "m1", "content": {}}

    def test_decode_malformed(self):
        with pytest.raises(DecodeError):
            decode_record(b"not json")

    def test_decode_non_object(self):
        with pytest.raises(DecodeError):
            loads_object(b'"invalid json"', what="record")
