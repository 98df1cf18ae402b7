"""Radio capability: a stream of raw advertisements.

:class:`BleakRadio` adapts ``bleak`` detection callbacks; tests and other
hosts can provide anything that satisfies :class:`Radio`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from pyblesync.models._base import utcnow
from pyblesync.models.advertisement import RawAdvertisement

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanFilter:
    service_uuids: Sequence[str] = ()
    min_signal_strength: int | None = None

    def accepts(self, signal_strength: int) -> bool:
        return self.min_signal_strength is None or signal_strength >= self.min_signal_strength


class Radio(Protocol):
    def scan(self, scan_filter: ScanFilter) -> AsyncIterator[RawAdvertisement]: ...


def manufacturer_blocks(manufacturer_data: Mapping[int, bytes]) -> Iterator[bytes]:
    """Rebuild the on-air manufacturer-specific data blocks.

    bleak splits the little-endian company identifier off the data; the
    protocol masks cover it, so it is put back in front.
    """
    for company_id, data in manufacturer_data.items():
        yield company_id.to_bytes(2, "little") + bytes(data)


def advertisements_from(device: BLEDevice, adv: AdvertisementData) -> list[RawAdvertisement]:
    name = adv.local_name or device.name or "Unknown"
    observed_at = utcnow()
    return [
        RawAdvertisement(
            source_id=device.address,
            device_name=name,
            signal_strength=adv.rssi,
            payload=block,
            observed_at=observed_at,
        )
        for block in manufacturer_blocks(adv.manufacturer_data)
    ]


class BleakRadio:
    """BLE scanner backed by :class:`bleak.BleakScanner`."""

    def __init__(self, *, adapter: str | None = None, scanning_mode: str = "active") -> None:
        self._adapter = adapter
        self._scanning_mode = scanning_mode

    async def scan(self, scan_filter: ScanFilter) -> AsyncIterator[RawAdvertisement]:
        queue: asyncio.Queue[RawAdvertisement] = asyncio.Queue()

        def detection_callback(device: BLEDevice, adv: AdvertisementData) -> None:
            if not scan_filter.accepts(adv.rssi):
                return
            for item in advertisements_from(device, adv):
                queue.put_nowait(item)

        scanner_kwargs: dict[str, Any] = {
            "detection_callback": detection_callback,
            "scanning_mode": self._scanning_mode,
        }
        if scan_filter.service_uuids:
            scanner_kwargs["service_uuids"] = list(scan_filter.service_uuids)
        if self._adapter:
            scanner_kwargs["adapter"] = self._adapter

        scanner = BleakScanner(**scanner_kwargs)
        await scanner.start()
        _logger.debug("BLE scan started %s", scanner_kwargs.get("service_uuids", "(no service filter)"))
        try:
            while True:
                yield await queue.get()
        finally:
            await scanner.stop()
            _logger.debug("BLE scan stopped")
