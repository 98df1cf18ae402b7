"""Durable FIFO of publishes made while the broker is unreachable."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum
from pathlib import Path

from pydantic import TypeAdapter

from pyblesync import _constants as const
from pyblesync._mqtt import SupportsSync
from pyblesync.exceptions import BleSyncStorageError
from pyblesync.models.outbox import PendingMessage
from pyblesync.state.persistence import read_json_file, write_json_file

_logger = logging.getLogger(__name__)

PENDING_ADAPTER: TypeAdapter[list[PendingMessage]] = TypeAdapter(list[PendingMessage])


class PublishOutcome(StrEnum):
    SENT = "sent"
    QUEUED = "queued"


class OfflineOutbox:
    """Publish-or-queue front of the sync channel.

    ``publish`` never raises and never waits for the connection: when the
    supervisor is not connected, or a direct publish fails, the message is
    appended to the queue file. ``flush`` replays the queue in enqueue order.
    Sent entries are dropped and the file rewritten once the drain stops, so
    a crash mid-flush replays already-sent messages (at-least-once).
    """

    def __init__(
        self,
        path: Path,
        channel: SupportsSync,
        *,
        is_connected: Callable[[], bool],
        dispatch_delay: float = const.FLUSH_DELAY,
    ) -> None:
        self._path = Path(path)
        self._channel = channel
        self._is_connected = is_connected
        self._dispatch_delay = dispatch_delay
        self._lock = asyncio.Lock()
        self._pending: list[PendingMessage] = self._load()
        if self._pending:
            _logger.info("Loaded %d queued message(s) from %s", len(self._pending), self._path)

    @property
    def pending(self) -> tuple[PendingMessage, ...]:
        return tuple(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def _load(self) -> list[PendingMessage]:
        try:
            return read_json_file(self._path, PENDING_ADAPTER) or []
        except BleSyncStorageError:
            _logger.warning("Discarding unreadable outbox %s", self._path, exc_info=True)
            return []

    def _save(self) -> None:
        try:
            write_json_file(self._path, PENDING_ADAPTER, self._pending)
        except OSError:
            _logger.warning("Failed to persist outbox %s", self._path, exc_info=True)

    def enqueue(self, topic: str, payload: str) -> None:
        self._pending.append(PendingMessage(topic=topic, payload=payload))
        self._save()
        _logger.debug("Queued message for %s (%d pending)", topic, len(self._pending))

    async def publish(self, topic: str, payload: str) -> PublishOutcome:
        if not self._is_connected():
            self.enqueue(topic, payload)
            return PublishOutcome.QUEUED
        result = await self._channel.publish(topic, payload)
        if result.success:
            return PublishOutcome.SENT
        _logger.info("Publish to %s failed (%s); queued for retry", topic, result.reason)
        self.enqueue(topic, payload)
        return PublishOutcome.QUEUED

    async def flush(self) -> int:
        """Send queued messages in order; stops at the first failure."""
        async with self._lock:
            if not self._pending:
                return 0
            sent = 0
            for message in list(self._pending):
                result = await self._channel.publish(message.topic, message.payload)
                if not result.success:
                    _logger.warning("Outbox flush stopped at %s: %s", message.topic, result.reason)
                    break
                sent += 1
                if self._dispatch_delay > 0:
                    await asyncio.sleep(self._dispatch_delay)
            if sent:
                del self._pending[:sent]
                self._save()
            _logger.debug("Outbox flushed %d message(s), %d remaining", sent, len(self._pending))
            return sent
