"""Live view of matched devices for the current discovery session."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from pyblesync import _constants as const
from pyblesync.models.advertisement import MatchedPacket

_logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Latest packet per ``device_id``.

    The registry keeps only live state: an upsert supersedes the previous
    packet for the device. Accumulating history is the merge store's job.
    """

    def __init__(self, *, stale_threshold: float = const.STALE_THRESHOLD) -> None:
        self._stale_after = timedelta(seconds=stale_threshold)
        self._packets: dict[str, MatchedPacket] = {}

    def __len__(self) -> int:
        return len(self._packets)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._packets

    def upsert(self, packet: MatchedPacket) -> MatchedPacket:
        """Store *packet* as the live state of its device and return the stored copy."""
        previous = self._packets.get(packet.device_id)
        count = previous.reception_count + 1 if previous is not None else 1
        stored = packet.model_copy(update={"reception_count": count, "has_lost_signal": False})
        self._packets[packet.device_id] = stored
        return stored

    def mark_stale_if_expired(self, now: datetime) -> list[str]:
        """Flag devices silent for longer than the threshold.

        Flagged packets stay in the registry with ``has_lost_signal`` set and a
        sentinel signal strength. Returns the ids flagged by this sweep; only
        a later :meth:`upsert` clears the flag.
        """
        flagged: list[str] = []
        for device_id, packet in self._packets.items():
            if packet.has_lost_signal:
                continue
            if now - packet.observed_at > self._stale_after:
                self._packets[device_id] = packet.model_copy(
                    update={"has_lost_signal": True, "signal_strength": const.LOST_SIGNAL_RSSI}
                )
                flagged.append(device_id)
        if flagged:
            _logger.debug("Devices lost signal: %s", ", ".join(flagged))
        return flagged

    def replace(self, packet: MatchedPacket) -> None:
        """Overwrite the stored packet without counting a reception."""
        self._packets[packet.device_id] = packet

    def get(self, device_id: str) -> MatchedPacket | None:
        return self._packets.get(device_id)

    def snapshot(self) -> dict[str, MatchedPacket]:
        return dict(self._packets)

    def reset(self) -> None:
        self._packets.clear()
