"""Decoded advertisement payloads."""

from __future__ import annotations

from pydantic import Field

from pyblesync.models._base import AwareDatetime, BleSyncModel, utcnow


class NeighborObservation(BleSyncModel):
    """How often a broadcaster heard one of its neighbors."""

    id: str
    """Neighbor id (decimal string of the id byte)."""
    count: int
    """Receptions counted during the elapsed window."""
    rate: float
    """Receptions per second (``0.0`` when no time has elapsed)."""
    observed_at: AwareDatetime = Field(default_factory=utcnow)


class DecodedTelemetry(BleSyncModel):
    """Fixed-width Neighbor payload (15 bytes)."""

    temperature: int
    pressure: float
    """Atmospheric pressure in hPa."""
    elapsed_seconds: int
    neighbors: list[NeighborObservation] = Field(default_factory=list)
    target_reached: bool = False
    """``True`` when any neighbor reached the target reception count."""


class ProfileSample(BleSyncModel):
    """Profile payload: the RSSI the phone measured for the broadcaster."""

    phone_rssi: int
    test_method: str = ""
    avg_tx: float | None = None
    avg_rx: float | None = None
