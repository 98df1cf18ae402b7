from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from pyblesync.ingestion.wire import encode_log
from pyblesync.matcher import AdvertisementMatcher
from pyblesync.models.advertisement import MatchedPacket
from pyblesync.models.calibration import CalibrationOffset
from pyblesync.state.events import (
    CalibrationDelete,
    CalibrationUpdate,
    ChangeAction,
    EntityFamily,
    LogDelete,
    LogUpdate,
    StoreChange,
    SuggestionUpdate,
)
from pyblesync.exceptions import BleSyncStorageError
from pyblesync.state.persistence import JsonStorage
from pyblesync.state.policy import history_key, merge_history, resolve_last_write
from pyblesync.state.store import MergeStore

from conftest import NEIGHBOR_ADVERTISEMENT, profile_advertisement


def _dt(seconds: float = 0) -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC) + timedelta(seconds=seconds)


def _neighbor(at: datetime, *, source: str = "src", group: str | None = None) -> MatchedPacket:
    packet = AdvertisementMatcher().classify(
        NEIGHBOR_ADVERTISEMENT, source_id=source, device_name="node", signal_strength=-60, observed_at=at
    )
    assert packet is not None
    return packet.model_copy(update={"group_id": group})


def _offset(device_id: str, offset: float, at: datetime) -> CalibrationOffset:
    return CalibrationOffset(device_id=device_id, offset=offset, base_altitude=100.0, timestamp=at)


class _Publisher:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, topic: str, payload: str) -> None:
        self.calls.append((topic, payload))


def _store(tmp_path: Path, **kwargs: object) -> tuple[MergeStore, _Publisher]:
    publisher = _Publisher()
    return MergeStore(JsonStorage(tmp_path), publisher, **kwargs), publisher  # type: ignore[arg-type]


# ------------------------------------------------------------------
# Policies
# ------------------------------------------------------------------


def test_last_write_wins_only_when_strictly_newer() -> None:
    old = _offset("7", 1.0, _dt(0))
    same_time = _offset("7", 2.0, _dt(0))
    newer = _offset("7", 3.0, _dt(1))

    assert resolve_last_write(None, old) is old
    assert resolve_last_write(old, same_time) is old
    assert resolve_last_write(old, newer) is newer
    assert resolve_last_write(newer, old) is newer


def test_merge_history_handles_missing_telemetry() -> None:
    with_telemetry = _neighbor(_dt(0))
    without = with_telemetry.model_copy(update={"decoded": None})

    assert merge_history(None, with_telemetry) is with_telemetry
    assert merge_history(with_telemetry, without) is with_telemetry
    assert merge_history(without, with_telemetry) is with_telemetry


def test_merge_history_concatenates_neighbors_and_takes_incoming_scalars() -> None:
    first = _neighbor(_dt(0))
    second = _neighbor(_dt(10)).model_copy(update={"signal_strength": -42})

    merged = merge_history(first, second)
    assert merged.decoded is not None and first.decoded is not None
    assert len(merged.decoded.neighbors) == 2 * len(first.decoded.neighbors)
    assert merged.decoded.neighbors[0].observed_at == _dt(0)
    assert merged.decoded.neighbors[-1].observed_at == _dt(10)
    assert merged.signal_strength == -42
    assert merged.observed_at == _dt(10)


def test_history_key_by_group_falls_back_to_device() -> None:
    assert history_key(_neighbor(_dt(), group="20260101_000000"), "group") == "20260101_000000"
    assert history_key(_neighbor(_dt()), "group") == "7"
    assert history_key(_neighbor(_dt(), group="g"), "device") == "7"


# ------------------------------------------------------------------
# Remote application
# ------------------------------------------------------------------


def test_remote_calibration_is_last_write_wins(tmp_path: Path) -> None:
    store, _ = _store(tmp_path)

    assert store.apply_remote(CalibrationUpdate(offset=_offset("7", 1.0, _dt(10))))
    assert not store.apply_remote(CalibrationUpdate(offset=_offset("7", 2.0, _dt(5))))
    assert store.calibration("7") == _offset("7", 1.0, _dt(10))
    assert store.apply_remote(CalibrationUpdate(offset=_offset("7", 3.0, _dt(11))))
    assert store.calibration("7").offset == 3.0  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_remote_delete_always_wins(tmp_path: Path) -> None:
    store, _ = _store(tmp_path)
    await store.apply_local_calibration(_offset("7", 1.0, _dt(100)))

    assert store.apply_remote(CalibrationDelete(device_id="7"))
    assert store.calibration("7") is None
    assert not store.apply_remote(CalibrationDelete(device_id="7"))


def test_remote_log_updates_merge_and_skip_echoes(tmp_path: Path) -> None:
    store, _ = _store(tmp_path)
    record = _neighbor(_dt(0))

    assert store.apply_remote(LogUpdate(record=record))
    assert not store.apply_remote(LogUpdate(record=record.model_copy(update={"source_id": "other"})))
    assert store.apply_remote(LogUpdate(record=_neighbor(_dt(5))))

    held = store.log("7")
    assert held is not None and held.decoded is not None
    assert len(held.decoded.neighbors) == 10


def test_remote_log_delete_matches_source_id(tmp_path: Path) -> None:
    store, _ = _store(tmp_path)
    store.apply_remote(LogUpdate(record=_neighbor(_dt(0), source="ABC-123")))

    assert store.apply_remote(LogDelete(record_id="ABC-123"))
    assert store.logs() == []


def test_remote_suggestions_replace_list(tmp_path: Path) -> None:
    store, _ = _store(tmp_path)
    assert store.apply_remote(SuggestionUpdate(suggestion_type="tester", items=["ann", "bob"]))
    assert not store.apply_remote(SuggestionUpdate(suggestion_type="tester", items=["ann", "bob"]))
    assert store.suggestions("tester") == ["ann", "bob"]
    assert store.suggestions("unknown") == []


def test_listeners_see_remote_flag(tmp_path: Path) -> None:
    store, _ = _store(tmp_path)
    changes: list[StoreChange] = []
    store.add_listener(changes.append)

    store.apply_remote(CalibrationUpdate(offset=_offset("7", 1.0, _dt())))
    store.apply_remote(CalibrationDelete(device_id="7"))

    assert changes == [
        StoreChange(family=EntityFamily.CALIBRATION, action=ChangeAction.UPDATE, key="7", remote=True),
        StoreChange(family=EntityFamily.CALIBRATION, action=ChangeAction.DELETE, key="7", remote=True),
    ]


# ------------------------------------------------------------------
# Local writes
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_local_calibration_persists_then_publishes(tmp_path: Path) -> None:
    store, publisher = _store(tmp_path)
    await store.apply_local_calibration(_offset("7", -2.5, _dt()))

    assert publisher.calls == [("calibration/offset/upload", "7,100.0,-2.5")]
    reloaded, _ = _store(tmp_path)
    assert reloaded.calibration("7") == _offset("7", -2.5, _dt())

    assert await store.delete_local_calibration("7")
    assert publisher.calls[-1] == ("calibration/offset/delete", "7")
    assert not await store.delete_local_calibration("7")


@pytest.mark.asyncio
async def test_local_log_publishes_merged_record(tmp_path: Path) -> None:
    store, publisher = _store(tmp_path)
    await store.apply_local_log(_neighbor(_dt(0)))
    merged = await store.apply_local_log(_neighbor(_dt(3)))

    assert merged.decoded is not None
    assert len(merged.decoded.neighbors) == 10
    assert publisher.calls[-1] == ("log/scanner/upload", encode_log([merged]))

    reloaded, _ = _store(tmp_path)
    assert reloaded.log("7") == merged


@pytest.mark.asyncio
async def test_profile_record_does_not_erase_history(tmp_path: Path) -> None:
    store, _ = _store(tmp_path)
    await store.apply_local_log(_neighbor(_dt(0)))
    profile = AdvertisementMatcher().classify(
        profile_advertisement(-70, 7), source_id="s", device_name="n", signal_strength=-50, observed_at=_dt(1)
    )
    assert profile is not None

    kept = await store.apply_local_log(profile)
    assert kept.decoded is not None
    assert kept.observed_at == _dt(0)


@pytest.mark.asyncio
async def test_group_keying_keeps_batches_apart(tmp_path: Path) -> None:
    store, _ = _store(tmp_path, key_by="group")
    await store.apply_local_log(_neighbor(_dt(0), group="g1"))
    await store.apply_local_log(_neighbor(_dt(1), group="g2"))

    assert {r.group_id for r in store.logs()} == {"g1", "g2"}
    assert await store.delete_local_log("g1")
    assert [r.group_id for r in store.logs()] == ["g2"]


@pytest.mark.asyncio
async def test_local_suggestions(tmp_path: Path) -> None:
    store, publisher = _store(tmp_path)
    await store.add_suggestion("tester", "ann")
    await store.add_suggestion("tester", "ann")
    await store.remove_suggestion("tester", "ann")

    assert store.suggestions("tester") == []
    assert publisher.calls == [
        ("suggestion/tester/upload", "ann"),
        ("suggestion/tester/upload", "ann"),
        ("suggestion/tester/delete", "ann"),
    ]


def test_corrupt_state_files_load_as_empty(tmp_path: Path) -> None:
    (tmp_path / JsonStorage.CALIBRATION_FILE).write_text("{not json")
    (tmp_path / JsonStorage.PACKETS_FILE).write_text('[{"device_id": 1}]')

    store, _ = _store(tmp_path)
    assert store.offsets() == {}
    assert store.logs() == []


def test_packet_log_survives_save_and_load(tmp_path: Path) -> None:
    neighbor = _neighbor(_dt(0))
    profile = AdvertisementMatcher().classify(
        profile_advertisement(-70), source_id="p", device_name="tag", signal_strength=-50, observed_at=_dt(1)
    )
    assert profile is not None and profile.profile is not None
    profile = profile.model_copy(
        update={"profile": profile.profile.model_copy(update={"avg_tx": -55.5, "avg_rx": -71.25}), "reception_count": 4}
    )
    lost = _neighbor(_dt(2), source="gone", group="20260101_120000").model_copy(
        update={"has_lost_signal": True, "signal_strength": -199}
    )

    storage = JsonStorage(tmp_path)
    storage.save_packets([neighbor, profile, lost])
    loaded = JsonStorage(tmp_path).load_packets()

    assert loaded == [neighbor, profile, lost]
    assert loaded[1].profile is not None and loaded[1].profile.avg_rx == -71.25
    assert loaded[2].has_lost_signal and loaded[2].group_id == "20260101_120000"


@pytest.mark.asyncio
async def test_clear_logs_publishes_a_delete_per_record(tmp_path: Path) -> None:
    store, publisher = _store(tmp_path)
    await store.apply_local_log(_neighbor(_dt(0)))
    profile = AdvertisementMatcher().classify(
        profile_advertisement(-70), source_id="p", device_name="tag", signal_strength=-50, observed_at=_dt(1)
    )
    assert profile is not None
    await store.apply_local_log(profile)
    publisher.calls.clear()

    assert await store.clear_logs() == 2
    assert store.logs() == []
    assert publisher.calls == [("log/scanner/delete", "7"), ("log/scanner/delete", "9")]
    assert JsonStorage(tmp_path).load_packets() == []


@pytest.mark.asyncio
async def test_offsets_export_and_import(tmp_path: Path) -> None:
    source, _ = _store(tmp_path / "a")
    await source.apply_local_calibration(_offset("7", -1.5, _dt(0)))
    await source.apply_local_calibration(_offset("8", 2.0, _dt(1)))
    exported = source.export_offsets()

    target, publisher = _store(tmp_path / "b")
    await target.apply_local_calibration(_offset("7", 9.0, _dt(5)))
    publisher.calls.clear()

    imported = await target.import_offsets(exported)
    assert [o.device_id for o in imported] == ["7", "8"]
    # Imported values replace local ones even when older.
    assert target.offsets() == source.offsets()
    assert [topic for topic, _ in publisher.calls] == ["calibration/offset/upload"] * 2
    assert JsonStorage(tmp_path / "b").load_calibration() == source.offsets()


@pytest.mark.asyncio
async def test_invalid_offset_import_changes_nothing(tmp_path: Path) -> None:
    store, publisher = _store(tmp_path)
    await store.apply_local_calibration(_offset("7", 1.0, _dt(0)))
    publisher.calls.clear()

    with pytest.raises(BleSyncStorageError):
        await store.import_offsets('[{"device_id": "8"}]')
    assert list(store.offsets()) == ["7"]
    assert publisher.calls == []


@pytest.mark.asyncio
async def test_clear_local_suggestions_is_not_published(tmp_path: Path) -> None:
    store, publisher = _store(tmp_path)
    store.apply_remote(SuggestionUpdate(suggestion_type="mask", items=["FF FF"]))
    await store.add_suggestion("data", "1E")
    publisher.calls.clear()
    changes: list[StoreChange] = []
    store.add_listener(changes.append)

    store.clear_local_suggestions()
    assert store.suggestions("mask") == [] and store.suggestions("data") == []
    assert publisher.calls == []
    assert {c.key for c in changes} == {"mask", "data"}
    assert JsonStorage(tmp_path).load_suggestions() == {}
