"""Bounded RSSI-pair capture for one target device."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum

from pyblesync import _constants as const
from pyblesync.models.advertisement import MatchedPacket, ProtocolKind
from pyblesync.models.capture import CaptureResult

_logger = logging.getLogger(__name__)


class CaptureStart(StrEnum):
    STARTED = "started"
    PREEMPTED = "preempted"


class FeedResult(StrEnum):
    ACCEPTED = "accepted"
    FULL = "full"
    IGNORED = "ignored"
    INACTIVE = "inactive"


def _mean(values: list[int]) -> float:
    return sum(values) / len(values) if values else 0.0


class CaptureSession:
    """Collects ``(tx, rx)`` pairs until ``capacity`` is reached.

    At most one session is active per instance. Starting while active
    discards the unfinished buffer. On reaching capacity the result is
    emitted exactly once to every listener and the session stops itself;
    samples fed afterwards are dropped until the next :meth:`start`.
    """

    def __init__(self, capacity: int = const.CAPTURE_CAPACITY) -> None:
        self._capacity = capacity
        self._target: str | None = None
        self._samples: list[tuple[int, int]] = []
        self._listeners: list[Callable[[CaptureResult], None]] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def is_active(self) -> bool:
        return self._target is not None

    @property
    def target_device_id(self) -> str | None:
        return self._target

    @property
    def samples(self) -> tuple[tuple[int, int], ...]:
        return tuple(self._samples)

    def add_listener(self, callback: Callable[[CaptureResult], None]) -> None:
        self._listeners.append(callback)

    def start(self, target_device_id: str) -> CaptureStart:
        outcome = CaptureStart.STARTED
        if self.is_active:
            _logger.info(
                "Capture for %s preempted by %s, discarding %d samples",
                self._target,
                target_device_id,
                len(self._samples),
            )
            self.stop()
            outcome = CaptureStart.PREEMPTED
        self._target = target_device_id
        self._samples = []
        _logger.debug("Capture started for %s (capacity=%d)", target_device_id, self._capacity)
        return outcome

    def stop(self) -> None:
        self._target = None
        self._samples = []

    def feed(self, device_id: str, tx: int, rx: int) -> FeedResult:
        if self._target is None:
            return FeedResult.INACTIVE
        if device_id != self._target:
            return FeedResult.IGNORED

        self._samples.append((tx, rx))
        if len(self._samples) < self._capacity:
            return FeedResult.ACCEPTED

        txs = [s[0] for s in self._samples]
        rxs = [s[1] for s in self._samples]
        result = CaptureResult(target_id=self._target, avg_tx=_mean(txs), avg_rx=_mean(rxs), txs=txs, rxs=rxs)
        self.stop()
        _logger.info("Capture for %s complete: avg_tx=%.2f avg_rx=%.2f", result.target_id, result.avg_tx, result.avg_rx)
        for listener in list(self._listeners):
            listener(result)
        return FeedResult.FULL

    def offer(self, packet: MatchedPacket) -> FeedResult:
        """Feed a Profile packet's ``(signal_strength, phone_rssi)`` pair."""
        if packet.protocol_kind != ProtocolKind.PROFILE or packet.profile is None or packet.has_lost_signal:
            return FeedResult.IGNORED if self.is_active else FeedResult.INACTIVE
        return self.feed(packet.device_id, packet.signal_strength, packet.profile.phone_rssi)
