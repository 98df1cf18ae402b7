"""Per-device pressure calibration records."""

from __future__ import annotations

from pydantic import Field

from pyblesync.models._base import AwareDatetime, BleSyncModel, utcnow


class CalibrationOffset(BleSyncModel):
    """Pressure offset measured for a device at a known altitude.

    ``timestamp`` decides last-write-wins conflicts between clients.
    """

    device_id: str
    offset: float
    base_altitude: float
    timestamp: AwareDatetime = Field(default_factory=utcnow)
