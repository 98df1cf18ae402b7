"""Radio advertisements and matched packets."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field, field_validator

from pyblesync.models._base import AwareDatetime, BleSyncModel, utcnow
from pyblesync.models.telemetry import DecodedTelemetry, ProfileSample


class ProtocolKind(StrEnum):
    PROFILE = "profile"
    NEIGHBOR = "neighbor"


class RawAdvertisement(BleSyncModel):
    """One radio event as delivered by the scanner."""

    source_id: str
    """Radio-level identifier of the emitter (stable within a discovery session)."""
    device_name: str = "Unknown"
    signal_strength: int
    payload: bytes
    """Full manufacturer-data block, company id included."""
    observed_at: AwareDatetime = Field(default_factory=utcnow)


class MatchedPacket(BleSyncModel):
    """An advertisement classified by a protocol template.

    Registry entries are keyed by ``device_id``; several ``source_id`` values
    may collapse onto one device.
    """

    device_id: str
    source_id: str
    device_name: str = "Unknown"
    signal_strength: int
    raw_hex: str
    mask_hex: str
    payload_hex: str
    protocol_kind: ProtocolKind
    observed_at: AwareDatetime
    decoded: DecodedTelemetry | None = None
    profile: ProfileSample | None = None
    has_lost_signal: bool = False
    group_id: str | None = None
    reception_count: int = 1

    @field_validator("device_id")
    @classmethod
    def _require_device_id(cls, value: str) -> str:
        device_id = value.strip()
        if not device_id:
            raise ValueError("device_id must be non-empty")
        return device_id
