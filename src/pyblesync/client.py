"""High-level async client tying discovery, capture and sync together."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from pyblesync._client.sync import SyncCoordinator
from pyblesync._mqtt import SupportsSync
from pyblesync._redact import redact_for_log
from pyblesync.capture import CaptureSession, CaptureStart
from pyblesync.config import SyncConfig
from pyblesync.exceptions import BleSyncError
from pyblesync.ingestion.topics import Topics
from pyblesync.matcher import AdvertisementMatcher
from pyblesync.models._base import utcnow
from pyblesync.models.advertisement import MatchedPacket, RawAdvertisement
from pyblesync.models.calibration import CalibrationOffset
from pyblesync.models.capture import CaptureResult
from pyblesync.models.connection import ConnectionStatus
from pyblesync.radio import BleakRadio, Radio, ScanFilter
from pyblesync.registry import DeviceRegistry
from pyblesync.session import TestSessionManager
from pyblesync.state.events import StoreChange, SyncMessage
from pyblesync.state.persistence import JsonStorage
from pyblesync.state.policy import HistoryKeying
from pyblesync.state.store import MergeStore

_logger = logging.getLogger(__name__)


class BleSyncClient:
    """Async client for BLE telemetry discovery and MQTT state sync.

    Usage::

        async with BleSyncClient(SyncConfig.from_env()) as client:
            client.add_packet_listener(print)
            await client.start_discovery()

    All state lives on the event loop thread. The radio adapter and the
    MQTT network thread only hand events over to it.
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        radio: Radio | None = None,
        channel: SupportsSync | None = None,
        key_by: HistoryKeying = "device",
        test_method: str = "default",
    ) -> None:
        self._config = config
        self._radio: Radio = radio or BleakRadio()
        self._topics = Topics(config.topic_root)
        self._matcher = AdvertisementMatcher(debounce_window=config.debounce_window, test_method=test_method)
        self._registry = DeviceRegistry(stale_threshold=config.stale_threshold)
        self._capture = CaptureSession(config.capture_capacity)
        self._capture.add_listener(self._on_capture_complete)
        self._sessions = TestSessionManager(config.idle_rotation)
        self._sync = SyncCoordinator(
            config=config,
            topics=self._topics,
            matcher=self._matcher,
            on_sync_message=self._on_sync_message,
            channel=channel,
        )
        self._store = MergeStore(
            JsonStorage(config.storage_dir),
            self._sync.publish,
            topics=self._topics,
            key_by=key_by,
        )

        self._packet_listeners: list[Callable[[MatchedPacket], None]] = []
        self._capture_listeners: list[Callable[[CaptureResult], None]] = []
        self._no_match_listeners: list[Callable[[], None]] = []
        self._discovery_tasks: list[asyncio.Task[None]] = []
        self._matched_any = False
        self._started = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> BleSyncClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await self._sync.start()

    async def close(self) -> None:
        await self.stop_discovery()
        if self._started:
            self._started = False
            await self._sync.stop()

    # ------------------------------------------------------------------
    # Accessors / observers
    # ------------------------------------------------------------------

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def topics(self) -> Topics:
        return self._topics

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def capture(self) -> CaptureSession:
        return self._capture

    @property
    def store(self) -> MergeStore:
        return self._store

    @property
    def sessions(self) -> TestSessionManager:
        return self._sessions

    @property
    def status(self) -> ConnectionStatus:
        return self._sync.supervisor.status

    @property
    def pending_messages(self) -> int:
        return len(self._sync.outbox)

    @property
    def is_discovering(self) -> bool:
        return bool(self._discovery_tasks)

    def devices(self) -> dict[str, MatchedPacket]:
        return self._registry.snapshot()

    def add_packet_listener(self, callback: Callable[[MatchedPacket], None]) -> None:
        self._packet_listeners.append(callback)

    def add_capture_listener(self, callback: Callable[[CaptureResult], None]) -> None:
        self._capture_listeners.append(callback)

    def add_status_listener(self, callback: Callable[[ConnectionStatus], None]) -> None:
        self._sync.supervisor.add_listener(callback)

    def add_store_listener(self, callback: Callable[[StoreChange], None]) -> None:
        self._store.add_listener(callback)

    def add_no_match_listener(self, callback: Callable[[], None]) -> None:
        """Called once per discovery session that matched nothing within the timeout."""
        self._no_match_listeners.append(callback)

    def _emit_packet(self, packet: MatchedPacket) -> None:
        for listener in list(self._packet_listeners):
            listener(packet)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def start_discovery(self, scan_filter: ScanFilter | None = None) -> None:
        """Start a discovery session; a running session is left untouched."""
        if self._discovery_tasks:
            return
        self._registry.reset()
        self._matcher.reset()
        self._matched_any = False
        scan_filter = scan_filter or ScanFilter()
        self._discovery_tasks = [
            asyncio.create_task(self._scan_loop(scan_filter)),
            asyncio.create_task(self._sweep_loop()),
            asyncio.create_task(self._no_match_timer()),
        ]
        _logger.info("Discovery started")

    async def stop_discovery(self) -> None:
        """Stop scanning, sweeping and any capture; safe to call repeatedly."""
        tasks, self._discovery_tasks = self._discovery_tasks, []
        self._capture.stop()
        if not tasks:
            return
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        _logger.info("Discovery stopped")

    async def _scan_loop(self, scan_filter: ScanFilter) -> None:
        async for raw in self._radio.scan(scan_filter):
            self.handle_advertisement(raw)

    def handle_advertisement(self, raw: RawAdvertisement) -> MatchedPacket | None:
        """Run one advertisement through matcher, registry and capture."""
        packet = self._matcher.match(raw)
        if packet is None:
            return None
        self._matched_any = True
        if self._registry.get(packet.device_id) is None:
            _logger.debug(
                "New device %s",
                redact_for_log({"device_id": packet.device_id, "source_id": packet.source_id, "kind": packet.protocol_kind}),
            )
        stored = self._registry.upsert(packet)
        self._capture.offer(stored)
        self._emit_packet(self._registry.get(stored.device_id) or stored)
        return stored

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.sweep_interval)
            self.sweep()

    def sweep(self) -> list[str]:
        now = utcnow()
        self._matcher.prune(now)
        flagged = self._registry.mark_stale_if_expired(now)
        for device_id in flagged:
            packet = self._registry.get(device_id)
            if packet is not None:
                self._emit_packet(packet)
        return flagged

    async def _no_match_timer(self) -> None:
        await asyncio.sleep(self._config.discovery_timeout)
        if self._matched_any:
            return
        _logger.info("No matching device found within %.1fs", self._config.discovery_timeout)
        for listener in list(self._no_match_listeners):
            listener()

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def start_capture(self, device_id: str) -> CaptureStart:
        return self._capture.start(device_id)

    def stop_capture(self) -> None:
        self._capture.stop()

    def _on_capture_complete(self, result: CaptureResult) -> None:
        packet = self._registry.get(result.target_id)
        if packet is not None and packet.profile is not None:
            profile = packet.profile.model_copy(update={"avg_tx": result.avg_tx, "avg_rx": result.avg_rx})
            self._registry.replace(packet.model_copy(update={"profile": profile}))
        for listener in list(self._capture_listeners):
            listener(result)

    # ------------------------------------------------------------------
    # Store writes
    # ------------------------------------------------------------------

    async def save_packet(self, device_id: str) -> MatchedPacket:
        """Record the live packet of *device_id* in the shared telemetry log."""
        packet = self._registry.get(device_id)
        if packet is None:
            raise BleSyncError(f"No live packet for device {device_id!r}")
        record = packet.model_copy(update={"group_id": self._sessions.current_id()})
        return await self._store.apply_local_log(record)

    async def delete_log(self, key: str) -> bool:
        return await self._store.delete_local_log(key)

    async def clear_logs(self) -> int:
        """Delete every saved log record locally and on the broker."""
        return await self._store.clear_logs()

    async def set_calibration(self, device_id: str, offset: float, base_altitude: float) -> CalibrationOffset:
        return await self._store.apply_local_calibration(
            CalibrationOffset(device_id=device_id, offset=offset, base_altitude=base_altitude, timestamp=utcnow())
        )

    async def clear_calibration(self, device_id: str | None = None) -> None:
        """Delete one calibration offset, or all of them when *device_id* is ``None``."""
        if device_id is None:
            await self._store.clear_calibration()
        else:
            await self._store.delete_local_calibration(device_id)

    def export_offsets(self) -> str:
        return self._store.export_offsets()

    async def import_offsets(self, text: str | bytes) -> list[CalibrationOffset]:
        return await self._store.import_offsets(text)

    async def add_suggestion(self, suggestion_type: str, value: str) -> None:
        await self._store.add_suggestion(suggestion_type, value)

    async def remove_suggestion(self, suggestion_type: str, value: str) -> None:
        await self._store.remove_suggestion(suggestion_type, value)

    def clear_local_suggestions(self) -> None:
        self._store.clear_local_suggestions()

    def new_test_group(self) -> str:
        return self._sessions.rotate()

    def _on_sync_message(self, message: SyncMessage) -> None:
        self._store.apply_remote(message)

    # ------------------------------------------------------------------
    # Connection control
    # ------------------------------------------------------------------

    async def request_initial_data(self) -> None:
        await self._sync.request_initial_data()

    async def flush_outbox(self) -> int:
        return await self._sync.outbox.flush()

    def network_changed(self, available: bool) -> None:
        self._sync.supervisor.network_changed(available)

    def suspend(self) -> None:
        self._sync.supervisor.suspend()

    def resume(self) -> None:
        self._sync.supervisor.resume()

    def force_reconnect(self) -> None:
        self._sync.supervisor.force_reconnect()
