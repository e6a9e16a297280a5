"""Tests for local identity storage."""

import json

from livesync.infra.identity import (
    InMemoryIdentityStore,
    JsonFileIdentityStore,
    participant_id_key,
    participant_name_key,
)


def test_keys_are_scoped_by_session_code():
    assert participant_id_key("ABC123") == "participant_id_ABC123"
    assert participant_name_key("ABC123") == "participant_name_ABC123"


def test_in_memory_store_treats_empty_as_absent():
    store = InMemoryIdentityStore({"participant_id_X": ""})
    assert store.get("participant_id_X") is None
    store.set("participant_id_X", "p1")
    assert store.get("participant_id_X") == "p1"
    store.delete("participant_id_X")
    assert store.get("participant_id_X") is None


def test_json_file_store_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "identity.json"
    first = JsonFileIdentityStore(path)
    assert first.get("participant_id_ABC123") is None

    first.set("participant_id_ABC123", "p1")
    first.set("participant_name_ABC123", "Ada")

    second = JsonFileIdentityStore(path)
    assert second.get("participant_id_ABC123") == "p1"
    assert json.loads(path.read_text()) == {
        "participant_id_ABC123": "p1",
        "participant_name_ABC123": "Ada",
    }

    second.delete("participant_id_ABC123")
    assert first.get("participant_id_ABC123") is None
    assert first.get("participant_name_ABC123") == "Ada"


def test_corrupt_file_reads_as_empty(tmp_path):
    path = tmp_path / "identity.json"
    path.write_text("{not json")
    store = JsonFileIdentityStore(path)
    assert store.get("participant_id_ABC123") is None
    store.set("participant_id_ABC123", "p1")
    assert store.get("participant_id_ABC123") == "p1"
