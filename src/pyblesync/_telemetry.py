"""Byte-level decoders for advertisement payload segments.

Decoders raise :class:`BleSyncDecodeError` on malformed input; callers treat
that as "no telemetry" rather than an error.
"""

from __future__ import annotations

from datetime import datetime

from pyblesync import _constants as const
from pyblesync.exceptions import BleSyncDecodeError
from pyblesync.models._base import utcnow
from pyblesync.models.telemetry import DecodedTelemetry, NeighborObservation, ProfileSample


def bytes_to_hex(data: bytes) -> str:
    """Format *data* as uppercase byte pairs separated by single spaces."""
    return " ".join(f"{b:02X}" for b in data)


def parse_hex(text: str) -> bytes:
    """Parse hex text, ignoring whitespace and commas between byte pairs."""
    cleaned = "".join(text.replace(",", " ").split())
    if len(cleaned) % 2:
        raise BleSyncDecodeError(f"Odd-length hex string ({len(cleaned)} digits)")
    try:
        return bytes.fromhex(cleaned)
    except ValueError as exc:
        raise BleSyncDecodeError(f"Invalid hex string: {text[:64]!r}") from exc


def decode_pressure(b0: int, b1: int, b2: int) -> float:
    """Three big-endian bytes of fixed point, scale 0.01 (hPa)."""
    return ((b0 << 16) | (b1 << 8) | b2) * const.PRESSURE_SCALE


def decode_neighbor_payload(payload: bytes, *, observed_at: datetime | None = None) -> DecodedTelemetry:
    """Decode the 15-byte Neighbor payload.

    Layout: temperature (1) | pressure (3) | elapsed seconds (1) |
    five ``(id, count)`` pairs. Pairs whose id byte is ``0`` are empty slots
    and are skipped.
    """
    if len(payload) != const.NEIGHBOR_PAYLOAD_LENGTH:
        raise BleSyncDecodeError(
            f"Neighbor payload must be {const.NEIGHBOR_PAYLOAD_LENGTH} bytes, got {len(payload)}"
        )
    when = observed_at or utcnow()
    temperature = payload[0]
    pressure = decode_pressure(payload[1], payload[2], payload[3])
    elapsed = payload[4]

    neighbors: list[NeighborObservation] = []
    target_reached = False
    for slot in range(const.NEIGHBOR_SLOTS):
        base = 5 + slot * 2
        neighbor_id = payload[base]
        if neighbor_id == 0:
            continue
        count = payload[base + 1]
        if count >= const.TARGET_RECEPTION_COUNT:
            target_reached = True
        neighbors.append(
            NeighborObservation(
                id=str(neighbor_id),
                count=count,
                rate=count / elapsed if elapsed > 0 else 0.0,
                observed_at=when,
            )
        )

    neighbors.sort(key=lambda n: n.count, reverse=True)
    return DecodedTelemetry(
        temperature=temperature,
        pressure=pressure,
        elapsed_seconds=elapsed,
        neighbors=neighbors,
        target_reached=target_reached,
    )


def decode_profile_payload(payload: bytes, *, test_method: str = "") -> ProfileSample:
    """Decode the 1-byte Profile payload (signed RSSI seen by the phone)."""
    if len(payload) != const.PROFILE_PAYLOAD_LENGTH:
        raise BleSyncDecodeError(f"Profile payload must be {const.PROFILE_PAYLOAD_LENGTH} byte, got {len(payload)}")
    return ProfileSample(
        phone_rssi=int.from_bytes(payload, "big", signed=True),
        test_method=test_method,
    )


def format_telemetry(decoded: DecodedTelemetry) -> str:
    """Render decoded telemetry as a multi-line summary for debug logs."""
    lines = [
        f"temperature: {decoded.temperature} °C",
        f"pressure: {decoded.pressure:.2f} hPa",
        f"elapsed: {decoded.elapsed_seconds} s",
    ]
    for index, neighbor in enumerate(decoded.neighbors, start=1):
        lines.append(
            f"  neighbor {index} id={neighbor.id} count={neighbor.count} rate={neighbor.rate:.2f}/s"
        )
    lines.append(f"target reached: {'yes' if decoded.target_reached else 'no'}")
    return "\n".join(lines)
