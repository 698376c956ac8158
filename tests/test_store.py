from __future__ import annotations

import json
from itertools import count
from pathlib import Path
from typing import Any

import pytest

from voting_node.models import StoreState, SubmittedBy, VotingDataIn
from voting_node.replication import LocalHub
from voting_node.storage import JsonFileStorage, MemoryStorage
from voting_node.store import VotingStore


class RecordingTransport:
    """Captures what the store sends without delivering anything."""

    def __init__(self) -> None:
        self.rooms: list[str] = []
        self.handlers: dict[str, Any] = {}
        self.sent: list[tuple[str, dict[str, Any]]] = []

    def join(self, room: str) -> None:
        self.rooms.append(room)

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.sent.append((event, payload))

    def on(self, event: str, handler: Any) -> None:
        self.handlers[event] = handler


def _clock():
    ticks = count(1_700_000_000_000)
    return lambda: next(ticks)


def _submission(place_id: int = 1, votes: int = 100, date: str = "2024-12-04") -> VotingDataIn:
    return VotingDataIn(
        place_id=place_id,
        votes_count=votes,
        male_voters=votes // 2,
        female_voters=votes - votes // 2,
        date=date,
        submitted_by=SubmittedBy(user_id=3, role="PO", place_name="Howrah Division"),
    )


def test_store_joins_voting_room_and_listens_for_updates() -> None:
    transport = RecordingTransport()
    VotingStore(transport, MemoryStorage())

    assert transport.rooms == ["votingRoom"]
    assert "votingUpdate" in transport.handlers


def test_add_voting_data_assigns_timestamp_and_broadcasts_slice() -> None:
    transport = RecordingTransport()
    store = VotingStore(transport, MemoryStorage(), clock=lambda: 42)

    record = store.add_voting_data(_submission())

    assert record.timestamp == 42
    event, payload = transport.sent[-1]
    assert event == "votingUpdate"
    assert set(payload) == {"votingData", "activityLogs"}
    assert payload["activityLogs"][0]["id"] == "42"
    assert payload["activityLogs"][0]["placeName"] == "Headquarter"


def test_votes_keep_insertion_order() -> None:
    store = VotingStore(RecordingTransport(), MemoryStorage(), clock=_clock())
    for votes in (5, 1, 9, 3):
        store.add_voting_data(_submission(votes=votes))

    assert [r.votes_count for r in store.state.voting_data] == [5, 1, 9, 3]
    assert [e.votes_count for e in store.state.activity_logs] == [3, 9, 1, 5]


def test_set_current_date_is_not_broadcast_but_persisted() -> None:
    transport = RecordingTransport()
    storage = MemoryStorage()
    store = VotingStore(transport, storage)

    store.set_current_date("2024-12-06")

    assert transport.sent == []
    assert storage.get_item("voting-storage")["currentDate"] == "2024-12-06"


def test_date_operations_broadcast_voting_dates() -> None:
    transport = RecordingTransport()
    store = VotingStore(transport, MemoryStorage())

    store.set_date_active("2024-12-05", True)
    store.set_date_complete("2024-12-04", True)

    assert [set(p) for _, p in transport.sent] == [{"votingDates"}, {"votingDates"}]
    dates = {d["date"]: d for d in transport.sent[-1][1]["votingDates"]}
    assert dates["2024-12-05"]["isActive"] is True
    assert dates["2024-12-04"]["isComplete"] is True


def test_reset_broadcasts_full_state() -> None:
    transport = RecordingTransport()
    store = VotingStore(transport, MemoryStorage(), clock=_clock())
    store.add_voting_data(_submission())
    store.set_current_date(None)

    store.reset()

    _, payload = transport.sent[-1]
    assert payload["votingData"] == []
    assert payload["activityLogs"] == []
    assert payload["currentDate"] == "2024-12-04"
    assert len(payload["votingDates"]) == 4
    assert store.state.current_date == "2024-12-04"


def test_malformed_update_is_dropped() -> None:
    transport = RecordingTransport()
    store = VotingStore(transport, MemoryStorage())

    transport.handlers["votingUpdate"]({"votingData": "not a list"})

    assert store.state.voting_data == []


def test_state_is_restored_from_file(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    first = VotingStore(RecordingTransport(), JsonFileStorage(path), clock=_clock())
    first.add_voting_data(_submission(votes=11))
    first.set_date_active("2024-12-06", True)
    first.set_current_date("2024-12-06")

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert set(on_disk["voting-storage"]) == {"votingData", "activityLogs", "votingDates", "currentDate"}

    second = VotingStore(RecordingTransport(), JsonFileStorage(path))
    assert second.state == first.state


def test_corrupt_storage_file_starts_fresh(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_text("{not json", encoding="utf-8")

    store = VotingStore(RecordingTransport(), JsonFileStorage(path))

    assert store.state.voting_data == []
    assert store.state.current_date == "2024-12-04"


def test_invalid_persisted_shape_starts_fresh(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_text(json.dumps({"voting-storage": {"votingData": [{"placeId": "x"}]}}), encoding="utf-8")

    store = VotingStore(RecordingTransport(), JsonFileStorage(path))

    assert store.state.voting_data == []


def test_subscribe_and_unsubscribe() -> None:
    store = VotingStore(RecordingTransport(), MemoryStorage())
    seen: list[StoreState] = []
    unsubscribe = store.subscribe(seen.append)

    store.set_current_date("2024-12-05")
    unsubscribe()
    store.set_current_date("2024-12-06")

    assert [s.current_date for s in seen] == ["2024-12-05"]


def test_get_state_is_a_copy() -> None:
    store = VotingStore(RecordingTransport(), MemoryStorage())

    snapshot = store.get_state()
    snapshot.voting_dates.clear()

    assert len(store.state.voting_dates) == 4


# ----------- several clients in one room -----------


def test_peers_converge_through_the_room() -> None:
    hub = LocalHub()
    a = VotingStore(hub.channel(), MemoryStorage(), clock=_clock())
    b = VotingStore(hub.channel(), MemoryStorage(), clock=_clock())

    a.add_voting_data(_submission(place_id=1, votes=100))
    b.set_date_active("2024-12-04", True)

    assert a.state.voting_data == b.state.voting_data
    assert a.state.voting_dates == b.state.voting_dates
    assert b.get_zonal_data("2024-12-04").total_votes == 100


def test_current_date_stays_local() -> None:
    hub = LocalHub()
    a = VotingStore(hub.channel(), MemoryStorage())
    b = VotingStore(hub.channel(), MemoryStorage())

    a.set_current_date("2024-12-10")

    assert b.state.current_date == "2024-12-04"


def test_reset_reaches_every_peer() -> None:
    hub = LocalHub()
    a = VotingStore(hub.channel(), MemoryStorage(), clock=_clock())
    b = VotingStore(hub.channel(), MemoryStorage(), clock=_clock())
    a.add_voting_data(_submission())
    b.set_current_date("2024-12-06")

    a.reset()

    assert b.state.voting_data == []
    assert b.state.current_date == "2024-12-04"


def test_last_broadcast_wins() -> None:
    # Two clients with diverged data: the later broadcast replaces the earlier one everywhere.
    hub = LocalHub()
    a = VotingStore(hub.channel(), MemoryStorage(), clock=_clock())
    b = VotingStore(hub.channel(), MemoryStorage(), clock=_clock())
    isolated = VotingStore(LocalHub().channel(), MemoryStorage(), clock=_clock())
    isolated.add_voting_data(_submission(votes=1))
    a.add_voting_data(_submission(votes=2))

    b.apply_update({"votingData": [r.to_wire() for r in isolated.state.voting_data]})

    assert [r.votes_count for r in b.state.voting_data] == [1]
    # b only merged, it did not broadcast
    assert [r.votes_count for r in a.state.voting_data] == [2]


def test_self_echo_changes_nothing() -> None:
    hub = LocalHub()
    store = VotingStore(hub.channel(), MemoryStorage(), clock=_clock())
    seen: list[StoreState] = []
    store.subscribe(seen.append)

    store.add_voting_data(_submission())

    # once for the local commit, once for the echo
    assert len(seen) == 2
    assert seen[0] == seen[1]


def test_rooms_are_isolated() -> None:
    hub = LocalHub()
    a = VotingStore(hub.channel(), MemoryStorage(), clock=_clock())
    other = VotingStore(hub.channel(), MemoryStorage(), room="otherRoom")

    a.add_voting_data(_submission())

    assert other.state.voting_data == []


# ----------- integrity of the in-memory state -----------


class FailingStorage(MemoryStorage):
    def set_item(self, key: str, value: Any) -> None:
        raise RuntimeError("disk gone")


def test_null_list_in_update_is_dropped() -> None:
    transport = RecordingTransport()
    store = VotingStore(transport, MemoryStorage(), clock=_clock())
    store.add_voting_data(_submission(votes=100))

    transport.handlers["votingUpdate"]({"votingData": None})

    assert [r.votes_count for r in store.state.voting_data] == [100]
    assert store.get_zonal_data().total_votes == 100
    store.add_voting_data(_submission(votes=5))
    assert len(store.state.voting_data) == 2


def test_null_current_date_in_update_is_merged() -> None:
    transport = RecordingTransport()
    store = VotingStore(transport, MemoryStorage())

    transport.handlers["votingUpdate"]({"currentDate": None})

    assert store.state.current_date is None


def test_failed_save_leaves_state_untouched() -> None:
    transport = RecordingTransport()
    store = VotingStore(transport, FailingStorage())

    with pytest.raises(RuntimeError):
        store.add_voting_data(_submission())

    assert store.state.voting_data == []
    assert transport.sent == []


def test_partial_storage_keeps_seed_dates(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_text(json.dumps({"voting-storage": {"votingData": []}}), encoding="utf-8")

    store = VotingStore(RecordingTransport(), JsonFileStorage(path))

    assert len(store.state.voting_dates) == 4
    assert store.state.current_date == "2024-12-04"


def test_broken_listener_does_not_stop_broadcast() -> None:
    transport = RecordingTransport()
    store = VotingStore(transport, MemoryStorage())
    seen: list[StoreState] = []

    def broken(state: StoreState) -> None:
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.subscribe(seen.append)
    store.set_date_active("2024-12-05", True)

    assert [set(p) for _, p in transport.sent] == [{"votingDates"}]
    assert len(seen) == 1
