from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import timedelta
from pathlib import Path

import pytest

from pyblesync.client import BleSyncClient
from pyblesync.config import SyncConfig
from pyblesync.exceptions import BleSyncError
from pyblesync.ingestion.wire import encode_log
from pyblesync.models._base import utcnow
from pyblesync.models.advertisement import MatchedPacket, RawAdvertisement
from pyblesync.models.capture import CaptureResult
from pyblesync.models.connection import ConnectionState
from pyblesync.radio import ScanFilter
from pyblesync.state.events import StoreChange

from conftest import NEIGHBOR_ADVERTISEMENT, FakeChannel, profile_advertisement

CLIENT_ID = "BLE_Scanner_TEST"


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


class _FakeRadio:
    def __init__(self, advertisements: list[RawAdvertisement] | None = None) -> None:
        self.advertisements = advertisements or []
        self.filters: list[ScanFilter] = []

    async def scan(self, scan_filter: ScanFilter) -> AsyncIterator[RawAdvertisement]:
        self.filters.append(scan_filter)
        for advertisement in self.advertisements:
            yield advertisement
        await asyncio.Event().wait()


def _config(tmp_path: Path, **overrides: object) -> SyncConfig:
    options: dict[str, object] = {
        "broker_host": "broker.test",
        "username": "scanner",
        "password": "secret",
        "client_id": CLIENT_ID,
        "storage_dir": tmp_path,
        "debounce_window": 0.0,
        "sweep_interval": 0.01,
        "discovery_timeout": 0.05,
        "reconnect_delay": 0.01,
        "probe_interval": 60.0,
        "flush_delay": 0.0,
    }
    options.update(overrides)
    return SyncConfig(**options)  # type: ignore[arg-type]


def _raw(payload: bytes, *, seconds_ago: float = 0.0, rssi: int = -60) -> RawAdvertisement:
    return RawAdvertisement(
        source_id="AA:BB:CC",
        device_name="node",
        signal_strength=rssi,
        payload=payload,
        observed_at=utcnow() - timedelta(seconds=seconds_ago),
    )


@pytest.mark.asyncio
async def test_connect_requests_initial_data(tmp_path: Path, channel: FakeChannel) -> None:
    async with BleSyncClient(_config(tmp_path), radio=_FakeRadio(), channel=channel) as client:
        assert client.status.state == ConnectionState.CONNECTED
        assert ("calibration/offset/request", CLIENT_ID) in channel.published
        assert ("log/scanner/request", CLIENT_ID) in channel.published
        assert ("suggestion/mask/request", CLIENT_ID) in channel.published
        assert ("suggestion/data/request", CLIENT_ID) in channel.published
    assert client.status.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_discovery_matches_and_publishes_packets(tmp_path: Path, channel: FakeChannel) -> None:
    radio = _FakeRadio([_raw(NEIGHBOR_ADVERTISEMENT), _raw(b"\x4c\x00\x02\x15")])
    packets: list[MatchedPacket] = []

    async with BleSyncClient(_config(tmp_path), radio=radio, channel=channel) as client:
        client.add_packet_listener(packets.append)
        await client.start_discovery(ScanFilter(min_signal_strength=-90))
        await _wait_for(lambda: "7" in client.devices())

        assert client.is_discovering
        assert radio.filters == [ScanFilter(min_signal_strength=-90)]
        assert packets[0].decoded is not None
        assert packets[0].decoded.temperature == 30

        await client.stop_discovery()
        await client.stop_discovery()
        assert not client.is_discovering


@pytest.mark.asyncio
async def test_no_match_signal_after_timeout(tmp_path: Path, channel: FakeChannel) -> None:
    signals: list[None] = []
    async with BleSyncClient(_config(tmp_path), radio=_FakeRadio(), channel=channel) as client:
        client.add_no_match_listener(lambda: signals.append(None))
        await client.start_discovery()
        await _wait_for(lambda: len(signals) == 1)
        await client.stop_discovery()


@pytest.mark.asyncio
async def test_sweep_flags_silent_devices(tmp_path: Path, channel: FakeChannel) -> None:
    async with BleSyncClient(_config(tmp_path), radio=_FakeRadio(), channel=channel) as client:
        client.handle_advertisement(_raw(NEIGHBOR_ADVERTISEMENT, seconds_ago=30))
        assert client.sweep() == ["7"]
        packet = client.devices()["7"]
        assert packet.has_lost_signal
        assert packet.signal_strength == -199


@pytest.mark.asyncio
async def test_capture_result_updates_profile_averages(tmp_path: Path, channel: FakeChannel) -> None:
    results: list[CaptureResult] = []
    async with BleSyncClient(_config(tmp_path, capture_capacity=2), radio=_FakeRadio(), channel=channel) as client:
        client.add_capture_listener(results.append)
        client.start_capture("9")
        client.handle_advertisement(_raw(profile_advertisement(-70), rssi=-50))
        client.handle_advertisement(_raw(profile_advertisement(-80), rssi=-60))

        assert [(r.avg_tx, r.avg_rx) for r in results] == [(-55.0, -75.0)]
        profile = client.devices()["9"].profile
        assert profile is not None
        assert (profile.avg_tx, profile.avg_rx) == (-55.0, -75.0)
        assert not client.capture.is_active


@pytest.mark.asyncio
async def test_save_packet_tags_group_and_publishes(tmp_path: Path, channel: FakeChannel) -> None:
    async with BleSyncClient(_config(tmp_path), radio=_FakeRadio(), channel=channel) as client:
        client.handle_advertisement(_raw(NEIGHBOR_ADVERTISEMENT))
        saved = await client.save_packet("7")

        assert saved.group_id == client.sessions.session.token
        assert ("log/scanner/upload", encode_log([saved])) in channel.published
        with pytest.raises(BleSyncError):
            await client.save_packet("404")


@pytest.mark.asyncio
async def test_offline_writes_replay_after_reconnect(tmp_path: Path, channel: FakeChannel) -> None:
    channel.fail_connect = True
    async with BleSyncClient(_config(tmp_path, max_reconnect_attempts=1), radio=_FakeRadio(), channel=channel) as client:
        await _wait_for(lambda: client.status.state == ConnectionState.FAILED)

        await client.set_calibration("7", -1.5, 120.0)
        await client.clear_calibration("7")
        assert client.pending_messages == 2
        assert (tmp_path / "outbox.json").exists()

        channel.fail_connect = False
        client.force_reconnect()
        await _wait_for(lambda: client.pending_messages == 0)

        assert channel.published[:2] == [
            ("calibration/offset/upload", "7,120.0,-1.5"),
            ("calibration/offset/delete", "7"),
        ]


@pytest.mark.asyncio
async def test_inbound_updates_reach_store_listeners(tmp_path: Path, channel: FakeChannel) -> None:
    changes: list[StoreChange] = []
    async with BleSyncClient(_config(tmp_path), radio=_FakeRadio(), channel=channel) as client:
        client.add_store_listener(changes.append)
        channel.deliver("calibration/offset/download", b"7,120.0,-1.5")
        channel.deliver("suggestion/tester/download", b"ann,bob")
        await _wait_for(lambda: len(changes) == 2)

        offset = client.store.calibration("7")
        assert offset is not None and offset.offset == -1.5
        assert client.store.suggestions("tester") == ["ann", "bob"]
        assert all(change.remote for change in changes)


@pytest.mark.asyncio
async def test_configured_suggestion_types_are_requested(tmp_path: Path, channel: FakeChannel) -> None:
    config = _config(tmp_path, suggestion_types=("tester",))
    async with BleSyncClient(config, radio=_FakeRadio(), channel=channel):
        requests = [topic for topic, _ in channel.published if topic.endswith("/request")]
        assert requests == ["calibration/offset/request", "log/scanner/request", "suggestion/tester/request"]


@pytest.mark.asyncio
async def test_clear_logs_and_offset_transfer(tmp_path: Path, channel: FakeChannel) -> None:
    async with BleSyncClient(_config(tmp_path), radio=_FakeRadio(), channel=channel) as client:
        client.handle_advertisement(_raw(NEIGHBOR_ADVERTISEMENT))
        await client.save_packet("7")
        await client.set_calibration("7", -1.5, 120.0)
        exported = client.export_offsets()

        assert await client.clear_logs() == 1
        assert ("log/scanner/delete", "7") in channel.published
        assert client.store.logs() == []

        await client.clear_calibration()
        imported = await client.import_offsets(exported)
        assert [o.device_id for o in imported] == ["7"]
        assert client.store.calibration("7") is not None
        assert channel.published[-1] == ("calibration/offset/upload", "7,120.0,-1.5")

        client.clear_local_suggestions()
        assert client.store.suggestions("mask") == []
