"""Merge store for synchronized entities.

This is the only component allowed to merge local and remote updates for
calibration offsets, telemetry logs and suggestion lists. Every change is
persisted before observers are notified; local changes are then published.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pyblesync.ingestion.topics import Topics
from pyblesync.ingestion.wire import encode_calibration, encode_log, encode_suggestions
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
    SyncMessage,
)
from pyblesync.state.persistence import JsonStorage, export_offsets_json, import_offsets_json
from pyblesync.state.policy import HistoryKeying, history_key, is_echo, merge_history, resolve_last_write

_logger = logging.getLogger(__name__)

Publisher = Callable[[str, str], Awaitable[Any]]


class MergeStore:
    """Local copy of the shared entities.

    Parameters
    ----------
    storage : JsonStorage
        Backing files; loaded once at construction.
    publish : Publisher
        Coroutine ``publish(topic, payload)`` used for local writes. In the
        client this is the outbox, so writes made while offline are queued.
    topics : Topics
        Wire topic names.
    key_by : {"device", "group"}
        Whether telemetry history is keyed by device id or by test group token.
    """

    def __init__(
        self,
        storage: JsonStorage,
        publish: Publisher,
        *,
        topics: Topics | None = None,
        key_by: HistoryKeying = "device",
    ) -> None:
        self._storage = storage
        self._publish = publish
        self._topics = topics or Topics()
        self._key_by = key_by
        self._offsets: dict[str, CalibrationOffset] = storage.load_calibration()
        self._logs: dict[str, MatchedPacket] = {}
        for record in storage.load_packets():
            self._logs[history_key(record, key_by)] = record
        self._suggestions: dict[str, list[str]] = storage.load_suggestions()
        self._listeners: list[Callable[[StoreChange], None]] = []

    # ------------------------------------------------------------------
    # Observers / getters
    # ------------------------------------------------------------------

    def add_listener(self, callback: Callable[[StoreChange], None]) -> None:
        self._listeners.append(callback)

    def _notify(self, family: EntityFamily, action: ChangeAction, key: str, *, remote: bool) -> None:
        change = StoreChange(family=family, action=action, key=key, remote=remote)
        for listener in list(self._listeners):
            listener(change)

    def calibration(self, device_id: str) -> CalibrationOffset | None:
        return self._offsets.get(device_id)

    def offsets(self) -> dict[str, CalibrationOffset]:
        return dict(self._offsets)

    def log(self, key: str) -> MatchedPacket | None:
        return self._logs.get(key)

    def logs(self) -> list[MatchedPacket]:
        return list(self._logs.values())

    def suggestions(self, suggestion_type: str) -> list[str]:
        return list(self._suggestions.get(suggestion_type, []))

    # ------------------------------------------------------------------
    # Remote updates
    # ------------------------------------------------------------------

    def apply_remote(self, message: SyncMessage) -> bool:
        """Apply an inbound message; returns whether local state changed."""
        if isinstance(message, CalibrationUpdate):
            return self._apply_remote_calibration(message.offset)
        if isinstance(message, CalibrationDelete):
            return self._remove_calibration(message.device_id, remote=True)
        if isinstance(message, LogUpdate):
            return self._apply_remote_log(message.record)
        if isinstance(message, LogDelete):
            return self._remove_log(message.record_id, remote=True)
        if isinstance(message, SuggestionUpdate):
            return self._apply_remote_suggestions(message.suggestion_type, message.items)
        _logger.debug("Ignoring unsupported message %r", message)
        return False

    def _apply_remote_calibration(self, incoming: CalibrationOffset) -> bool:
        existing = self._offsets.get(incoming.device_id)
        winner = resolve_last_write(existing, incoming)
        if winner is existing:
            _logger.debug("Discarding stale calibration for %s", incoming.device_id)
            return False
        self._offsets[incoming.device_id] = winner
        self._storage.save_calibration(self._offsets)
        self._notify(EntityFamily.CALIBRATION, ChangeAction.UPDATE, incoming.device_id, remote=True)
        return True

    def _apply_remote_log(self, incoming: MatchedPacket) -> bool:
        key = history_key(incoming, self._key_by)
        existing = self._logs.get(key)
        if is_echo(existing, incoming):
            return False
        self._logs[key] = merge_history(existing, incoming)
        self._storage.save_packets(self.logs())
        self._notify(EntityFamily.LOG, ChangeAction.UPDATE, key, remote=True)
        return True

    def _apply_remote_suggestions(self, suggestion_type: str, items: list[str]) -> bool:
        if self._suggestions.get(suggestion_type) == items:
            return False
        self._suggestions[suggestion_type] = list(items)
        self._storage.save_suggestions(self._suggestions)
        self._notify(EntityFamily.SUGGESTION, ChangeAction.UPDATE, suggestion_type, remote=True)
        return True

    def _remove_calibration(self, device_id: str, *, remote: bool) -> bool:
        if self._offsets.pop(device_id, None) is None:
            return False
        self._storage.save_calibration(self._offsets)
        self._notify(EntityFamily.CALIBRATION, ChangeAction.DELETE, device_id, remote=remote)
        return True

    def _remove_log(self, record_id: str, *, remote: bool) -> bool:
        doomed = [
            key
            for key, record in self._logs.items()
            if record_id in (key, record.source_id, record.device_id)
        ]
        if not doomed:
            return False
        for key in doomed:
            del self._logs[key]
        self._storage.save_packets(self.logs())
        for key in doomed:
            self._notify(EntityFamily.LOG, ChangeAction.DELETE, key, remote=remote)
        return True

    # ------------------------------------------------------------------
    # Local writes
    # ------------------------------------------------------------------

    async def apply_local_calibration(self, offset: CalibrationOffset) -> CalibrationOffset:
        self._offsets[offset.device_id] = offset
        self._storage.save_calibration(self._offsets)
        self._notify(EntityFamily.CALIBRATION, ChangeAction.UPDATE, offset.device_id, remote=False)
        await self._publish(self._topics.calibration.upload, encode_calibration([offset]))
        return offset

    async def delete_local_calibration(self, device_id: str) -> bool:
        removed = self._remove_calibration(device_id, remote=False)
        if removed:
            await self._publish(self._topics.calibration.delete, device_id)
        return removed

    async def clear_calibration(self) -> None:
        for device_id in list(self._offsets):
            await self.delete_local_calibration(device_id)

    def export_offsets(self) -> str:
        return export_offsets_json(list(self._offsets.values()))

    async def import_offsets(self, text: str | bytes) -> list[CalibrationOffset]:
        """Load an offset export into local state and publish every imported offset.

        Imported offsets replace local ones regardless of timestamp. Raises
        :class:`BleSyncStorageError` before anything changes when *text* is invalid.
        """
        imported = import_offsets_json(text)
        for offset in imported:
            self._offsets[offset.device_id] = offset
        self._storage.save_calibration(self._offsets)
        for offset in imported:
            self._notify(EntityFamily.CALIBRATION, ChangeAction.UPDATE, offset.device_id, remote=False)
        for offset in imported:
            await self._publish(self._topics.calibration.upload, encode_calibration([offset]))
        _logger.info("Imported %d calibration offset(s)", len(imported))
        return imported

    async def apply_local_log(self, record: MatchedPacket) -> MatchedPacket:
        """Merge *record* into its history and publish the merged record."""
        key = history_key(record, self._key_by)
        merged = merge_history(self._logs.get(key), record)
        self._logs[key] = merged
        self._storage.save_packets(self.logs())
        self._notify(EntityFamily.LOG, ChangeAction.UPDATE, key, remote=False)
        await self._publish(self._topics.log.upload, encode_log([merged]))
        return merged

    async def delete_local_log(self, key: str) -> bool:
        removed = self._remove_log(key, remote=False)
        if removed:
            await self._publish(self._topics.log.delete, key)
        return removed

    async def clear_logs(self) -> int:
        """Empty the telemetry log, publishing a delete for every record."""
        keys = list(self._logs)
        self._logs.clear()
        self._storage.save_packets([])
        for key in keys:
            self._notify(EntityFamily.LOG, ChangeAction.DELETE, key, remote=False)
        for key in keys:
            await self._publish(self._topics.log.delete, key)
        return len(keys)

    async def add_suggestion(self, suggestion_type: str, value: str) -> None:
        items = self._suggestions.setdefault(suggestion_type, [])
        if value not in items:
            items.append(value)
            self._storage.save_suggestions(self._suggestions)
            self._notify(EntityFamily.SUGGESTION, ChangeAction.UPDATE, suggestion_type, remote=False)
        await self._publish(self._topics.suggestion(suggestion_type).upload, encode_suggestions([value]))

    async def remove_suggestion(self, suggestion_type: str, value: str) -> None:
        items = self._suggestions.get(suggestion_type, [])
        if value in items:
            items.remove(value)
            self._storage.save_suggestions(self._suggestions)
            self._notify(EntityFamily.SUGGESTION, ChangeAction.DELETE, suggestion_type, remote=False)
        await self._publish(self._topics.suggestion(suggestion_type).delete, value)

    def clear_local_suggestions(self) -> None:
        """Forget every local suggestion list; peers are not told."""
        types = list(self._suggestions)
        self._suggestions.clear()
        self._storage.save_suggestions({})
        for suggestion_type in types:
            self._notify(EntityFamily.SUGGESTION, ChangeAction.DELETE, suggestion_type, remote=False)
