"""Tests for the sync protocol."""

import json
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from notesync.notes import (
    Base64NoteCodec,
    ChangeEvent,
    ChangeEventType,
    Note,
    NoteStatus,
    SyncData,
)
from notesync.store import NoteStore, SQLiteNoteStore
from notesync.sync import (
    InternalError,
    InvalidArgumentError,
    SyncCoordinator,
    UnauthenticatedError,
    apply_local_changes,
    resolve_remote_changes,
)


T0 = datetime(2020, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
NOW = datetime(2020, 5, 2, 8, 30, 0, tzinfo=timezone.utc)
MS = timedelta(milliseconds=1)

codec = Base64NoteCodec()


@pytest.fixture
def store():
    """Create an in-memory note store."""
    store = SQLiteNoteStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def coordinator(store):
    """Create a coordinator with a fixed clock."""
    return SyncCoordinator(store, codec, clock=lambda: NOW)


def put_encoded(store, user_id, note, synced):
    """Store a client-form note the way the server would."""
    encoded = codec.encode(note)
    encoded.synced = synced
    store.put(user_id, note.uuid, encoded)


def request(last_sync=T0, events=None):
    return SyncData(last_sync=last_sync, events=events or []).to_dict()


class TestResolveRemoteChanges:
    """Tests for computing remote changes."""

    def test_returns_changes_after_last_sync(self, store):
        """Test only notes written after the checkpoint are returned."""
        put_encoded(store, "alice", Note(uuid="old", title="old"), T0 - MS)
        put_encoded(store, "alice", Note(uuid="new", title="new"), T0 + MS)

        changes = resolve_remote_changes(store, codec, "alice", SyncData(last_sync=T0))

        assert changes == [ChangeEvent.added(Note(uuid="new", title="new"))]

    def test_boundary_note_is_not_resent(self, store):
        """Test a note stamped exactly at the checkpoint is excluded."""
        put_encoded(store, "alice", Note(uuid="a"), T0)

        assert resolve_remote_changes(store, codec, "alice", SyncData(last_sync=T0)) == []

    def test_deleted_note_yields_deleted_event(self, store):
        """Test tombstones become Deleted events without a note."""
        put_encoded(store, "alice", Note(uuid="a"), T0)
        store.delete("alice", "a", T0 + MS)

        changes = resolve_remote_changes(store, codec, "alice", SyncData(last_sync=T0))

        assert changes == [ChangeEvent.deleted("a")]
        assert changes[0].note is None

    def test_never_emits_updated(self, store):
        """Test rewritten notes are still reported as Added."""
        put_encoded(store, "alice", Note(uuid="a", content="v1"), T0 - MS)
        put_encoded(store, "alice", Note(uuid="a", content="v2"), T0 + MS)

        changes = resolve_remote_changes(store, codec, "alice", SyncData(last_sync=T0))

        assert [c.type for c in changes] == [ChangeEventType.ADDED]
        assert changes[0].note.content == "v2"

    def test_notes_are_decoded_and_stripped(self, store):
        """Test returned notes are in client form without synced."""
        put_encoded(store, "alice", Note(uuid="a", title="héllo"), T0 + MS)

        note = resolve_remote_changes(store, codec, "alice", SyncData(last_sync=T0))[0].note

        assert note.title == "héllo"
        assert note.synced is None
        assert "synced" not in note.to_dict()

    def test_echo_suppression(self, store):
        """Test notes the client sent events for are not returned."""
        put_encoded(store, "alice", Note(uuid="a"), T0 + MS)
        put_encoded(store, "alice", Note(uuid="b"), T0 + MS)

        sync_data = SyncData(last_sync=T0, events=[ChangeEvent.deleted("a")])
        changes = resolve_remote_changes(store, codec, "alice", sync_data)

        assert [c.uuid for c in changes] == ["b"]

    def test_echo_suppression_wins_over_newer_server_copy(self, store):
        """Test the client's event suppresses even a newer stored change."""
        put_encoded(store, "alice", Note(uuid="a", content="server"), NOW)

        sync_data = SyncData(
            last_sync=T0,
            events=[ChangeEvent.added(Note(uuid="a", content="client"))],
        )

        assert resolve_remote_changes(store, codec, "alice", sync_data) == []

    def test_completeness(self, store):
        """Test every unsent change after the checkpoint appears exactly once."""
        for i in range(10):
            put_encoded(store, "alice", Note(uuid=f"n{i}"), T0 + (i - 4) * MS)
        store.delete("alice", "n9", T0 + 20 * MS)

        sync_data = SyncData(last_sync=T0, events=[ChangeEvent.deleted("n6")])
        changes = resolve_remote_changes(store, codec, "alice", sync_data)

        uuids = [c.uuid for c in changes]
        assert sorted(uuids) == ["n5", "n7", "n8", "n9"]
        assert len(set(uuids)) == len(uuids)
        assert changes[-1] == ChangeEvent.deleted("n9")

    def test_store_failure_is_internal(self):
        """Test store read errors surface as InternalError."""
        store = MagicMock(spec=NoteStore)
        store.query_changed_since.side_effect = OSError("disk on fire")

        with pytest.raises(InternalError) as exc_info:
            resolve_remote_changes(store, codec, "alice", SyncData(last_sync=T0))

        assert "disk on fire" not in exc_info.value.message

    def test_malformed_stored_note_is_internal(self, store):
        """Test undecodable stored content surfaces as InternalError."""
        store.put("alice", "a", Note(uuid="a", content="%%%", synced=T0 + MS))

        with pytest.raises(InternalError):
            resolve_remote_changes(store, codec, "alice", SyncData(last_sync=T0))

    def test_invalid_stored_status_is_internal(self, store):
        """Test an unknown stored status surfaces as InternalError."""
        store.put("alice", "a", Note(uuid="a", synced=T0 + MS))
        store._conn.execute("UPDATE notes SET status = 'Archived'")
        store._conn.commit()

        with pytest.raises(InternalError):
            resolve_remote_changes(store, codec, "alice", SyncData(last_sync=T0))


class TestApplyLocalChanges:
    """Tests for applying client changes."""

    def test_added_is_encoded_and_stamped(self, store):
        """Test added notes are stored encoded with the sync time."""
        sync_data = SyncData(
            last_sync=T0,
            events=[ChangeEvent.added(Note(uuid="a", title="hi"))],
        )

        assert apply_local_changes(store, codec, "alice", sync_data, NOW) == 1

        stored = store.get("alice", "a")
        assert stored.title == "aGk="
        assert stored.synced == NOW

    def test_updated_overwrites(self, store):
        """Test updated events are an upsert like added ones."""
        put_encoded(store, "alice", Note(uuid="a", title="old", content="c"), T0)

        sync_data = SyncData(
            last_sync=T0,
            events=[ChangeEvent(uuid="a", type=ChangeEventType.UPDATED, note=Note(uuid="a", title="new"))],
        )
        apply_local_changes(store, codec, "alice", sync_data, NOW)

        stored = codec.decode(store.get("alice", "a"))
        assert stored.title == "new"
        assert stored.content is None

    def test_updated_for_unknown_note_creates_it(self, store):
        """Test the server does not distinguish create from overwrite."""
        sync_data = SyncData(
            last_sync=T0,
            events=[ChangeEvent(uuid="a", type=ChangeEventType.UPDATED, note=Note(uuid="a"))],
        )
        apply_local_changes(store, codec, "alice", sync_data, NOW)

        assert store.get("alice", "a") is not None

    def test_added_twice_is_idempotent(self, store):
        """Test applying the same event twice yields the same note."""
        sync_data = SyncData(
            last_sync=T0,
            events=[ChangeEvent.added(Note(uuid="a", title="t", content="c"))],
        )

        apply_local_changes(store, codec, "alice", sync_data, NOW)
        first = store.get("alice", "a")
        apply_local_changes(store, codec, "alice", sync_data, NOW + MS)
        second = store.get("alice", "a")

        assert first.without_synced() == second.without_synced()
        assert second.synced == NOW + MS

    def test_deleted_tombstones(self, store):
        """Test deleted events tombstone the stored note."""
        put_encoded(store, "alice", Note(uuid="a", title="t"), T0)

        sync_data = SyncData(last_sync=T0, events=[ChangeEvent.deleted("a")])
        apply_local_changes(store, codec, "alice", sync_data, NOW)

        stored = store.get("alice", "a")
        assert stored.status == NoteStatus.DELETED
        assert stored.synced == NOW

    def test_delete_unknown_is_noop(self, store):
        """Test deleting never-existing or already deleted notes succeeds."""
        put_encoded(store, "alice", Note(uuid="a"), T0)
        store.delete("alice", "a", T0 + MS)

        sync_data = SyncData(
            last_sync=T0,
            events=[ChangeEvent.deleted("a"), ChangeEvent.deleted("missing")],
        )

        assert apply_local_changes(store, codec, "alice", sync_data, NOW) == 2
        assert store.get("alice", "missing") is None

    def test_client_synced_is_replaced(self, store):
        """Test the server always stamps its own time."""
        note = Note(uuid="a", synced=datetime(2030, 1, 1, tzinfo=timezone.utc))
        sync_data = SyncData(last_sync=T0, events=[ChangeEvent.added(note)])

        apply_local_changes(store, codec, "alice", sync_data, NOW)

        assert store.get("alice", "a").synced == NOW

    def test_failure_keeps_earlier_writes(self, store):
        """Test a failing write stops the loop after committing earlier events."""
        def put(user_id, uuid, note):
            if uuid == "b":
                raise OSError("write failed")
            store.put(user_id, uuid, note)

        failing = MagicMock(spec=NoteStore)
        failing.put.side_effect = put

        sync_data = SyncData(
            last_sync=T0,
            events=[
                ChangeEvent.added(Note(uuid="a")),
                ChangeEvent.added(Note(uuid="b")),
                ChangeEvent.added(Note(uuid="c")),
            ],
        )

        with pytest.raises(InternalError):
            apply_local_changes(failing, codec, "alice", sync_data, NOW)

        assert store.get("alice", "a") is not None
        assert store.get("alice", "b") is None
        assert store.get("alice", "c") is None


class TestSyncCoordinator:
    """Tests for full sync rounds."""

    def test_unauthenticated(self):
        """Test anonymous callers are rejected before any store access."""
        store = MagicMock(spec=NoteStore)
        coordinator = SyncCoordinator(store, codec)

        with pytest.raises(UnauthenticatedError):
            coordinator.handle(None, request())

        assert store.mock_calls == []

    def test_missing_last_sync(self):
        """Test invalid requests are rejected before any store access."""
        store = MagicMock(spec=NoteStore)
        coordinator = SyncCoordinator(store, codec)

        with pytest.raises(InvalidArgumentError):
            coordinator.handle("alice", {"events": []})

        assert store.mock_calls == []

    def test_invalid_event_rejects_whole_request(self, coordinator, store):
        """Test one bad event means no event is applied."""
        payload = request(events=[ChangeEvent.added(Note(uuid="a"))])
        payload["events"].append({"uuid": "b", "type": "Added"})

        with pytest.raises(InvalidArgumentError):
            coordinator.handle("alice", payload)

        assert store.get("alice", "a") is None

    def test_delete_scenario(self, coordinator, store):
        """Test deleting A while B changed remotely."""
        put_encoded(store, "alice", Note(uuid="A", title="a"), T0 - MS)
        put_encoded(store, "alice", Note(uuid="B", title="b"), T0 + MS)

        response = coordinator.handle("alice", request(events=[ChangeEvent.deleted("A")]))

        assert store.get("alice", "A").status == NoteStatus.DELETED
        assert response == {
            "lastSync": "2020-05-02T08:30:00.000Z",
            "events": [
                {"uuid": "B", "type": "Added", "note": {"uuid": "B", "status": "Active", "title": "b"}},
            ],
        }

    def test_add_scenario(self, coordinator, store):
        """Test adding C with nothing newer on the server."""
        put_encoded(store, "alice", Note(uuid="old"), T0 - MS)

        response = coordinator.handle(
            "alice",
            request(events=[ChangeEvent.added(Note(uuid="C", content="hello"))]),
        )

        stored = store.get("alice", "C")
        assert stored.synced == NOW
        assert codec.decode(stored).content == "hello"
        assert response["events"] == []
        assert response["lastSync"] == "2020-05-02T08:30:00.000Z"

    def test_own_write_not_echoed_next_round(self, coordinator, store):
        """Test the next round from the returned checkpoint sees nothing new."""
        first = coordinator.handle(
            "alice", request(events=[ChangeEvent.added(Note(uuid="C"))])
        )

        second = coordinator.handle("alice", {"lastSync": first["lastSync"], "events": []})

        assert second["events"] == []

    def test_other_device_sees_change(self, coordinator, store):
        """Test a second replica picks up another replica's change."""
        coordinator.handle("alice", request(events=[ChangeEvent.added(Note(uuid="C", title="x"))]))

        response = coordinator.handle("alice", request())

        assert response["events"] == [
            {"uuid": "C", "type": "Added", "note": {"uuid": "C", "status": "Active", "title": "x"}},
        ]

    def test_single_sync_time(self, store):
        """Test the clock is read once per round."""
        clock = MagicMock(side_effect=[NOW, NOW + timedelta(hours=1)])
        coordinator = SyncCoordinator(store, codec, clock=clock)

        response = coordinator.handle(
            "alice",
            request(events=[ChangeEvent.added(Note(uuid="a")), ChangeEvent.added(Note(uuid="b"))]),
        )

        assert clock.call_count == 1
        assert store.get("alice", "a").synced == NOW
        assert store.get("alice", "b").synced == NOW
        assert response["lastSync"] == "2020-05-02T08:30:00.000Z"

    def test_store_failure_is_internal(self):
        """Test store errors are collapsed to a generic InternalError."""
        store = MagicMock(spec=NoteStore)
        store.query_changed_since.return_value = iter([])
        store.put.side_effect = RuntimeError("connection refused at 10.0.0.5")
        coordinator = SyncCoordinator(store, codec, clock=lambda: NOW)

        with pytest.raises(InternalError) as exc_info:
            coordinator.handle("alice", request(events=[ChangeEvent.added(Note(uuid="a"))]))

        assert "10.0.0.5" not in exc_info.value.message

    def test_sync_bytes(self, coordinator, store):
        """Test the raw bytes entry point."""
        put_encoded(store, "alice", Note(uuid="B"), T0 + MS)
        raw = json.dumps(request()).encode()

        response = json.loads(coordinator.sync("alice", raw))

        assert response["events"] == [
            {"uuid": "B", "type": "Added", "note": {"uuid": "B", "status": "Active"}},
        ]

    def test_sync_bytes_invalid_json(self, coordinator):
        """Test undecodable bodies are invalid arguments."""
        with pytest.raises(InvalidArgumentError):
            coordinator.sync("alice", b"{not json")

    def test_sync_bytes_unauthenticated_first(self, coordinator):
        """Test authentication is checked before decoding."""
        with pytest.raises(UnauthenticatedError):
            coordinator.sync(None, b"{not json")

    def test_sync_bytes_lone_surrogate_rejected_before_writes(self, coordinator, store):
        """Test text that cannot be stored as UTF-8 rejects the whole round."""
        raw = (
            b'{"lastSync": "2020-05-01T12:00:00.000Z", "events": ['
            b'{"uuid": "a", "type": "Added", "note": {"uuid": "a", "status": "Active", "title": "ok"}}, '
            b'{"uuid": "b", "type": "Added", "note": {"uuid": "b", "status": "Active", "title": "\\ud800"}}'
            b']}'
        )

        with pytest.raises(InvalidArgumentError):
            coordinator.sync("alice", raw)

        assert store.get("alice", "a") is None
        assert store.get("alice", "b") is None

    def test_sync_bytes_deeply_nested(self, coordinator):
        """Test pathologically nested JSON is an invalid argument."""
        raw = b"[" * 100000 + b"]" * 100000

        with pytest.raises(InvalidArgumentError):
            coordinator.sync("alice", raw)
