"""Data models for advertisements, telemetry and sync state."""

from pyblesync.models._base import AwareDatetime, BleSyncModel, ensure_aware
from pyblesync.models.advertisement import MatchedPacket, ProtocolKind, RawAdvertisement
from pyblesync.models.calibration import CalibrationOffset
from pyblesync.models.capture import CaptureResult
from pyblesync.models.connection import ConnectionState, ConnectionStatus
from pyblesync.models.outbox import PendingMessage
from pyblesync.models.telemetry import DecodedTelemetry, NeighborObservation, ProfileSample

__all__ = [
    "AwareDatetime",
    "BleSyncModel",
    "CalibrationOffset",
    "CaptureResult",
    "ConnectionState",
    "ConnectionStatus",
    "DecodedTelemetry",
    "MatchedPacket",
    "NeighborObservation",
    "PendingMessage",
    "ProfileSample",
    "ProtocolKind",
    "RawAdvertisement",
    "ensure_aware",
]
