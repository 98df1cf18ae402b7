"""pyblesync - BLE telemetry discovery with MQTT state sync."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyblesync")
except PackageNotFoundError:
    __version__ = "0+local"
from pyblesync.capture import CaptureSession, CaptureStart, FeedResult
from pyblesync.client import BleSyncClient
from pyblesync.config import SyncConfig
from pyblesync.exceptions import (
    BleSyncConfigError,
    BleSyncDecodeError,
    BleSyncError,
    BleSyncStorageError,
    BleSyncTransportError,
)
from pyblesync.matcher import AdvertisementMatcher, ProtocolTemplate
from pyblesync.models import (
    CalibrationOffset,
    CaptureResult,
    ConnectionState,
    ConnectionStatus,
    DecodedTelemetry,
    MatchedPacket,
    NeighborObservation,
    PendingMessage,
    ProfileSample,
    ProtocolKind,
    RawAdvertisement,
)
from pyblesync.radio import BleakRadio, Radio, ScanFilter
from pyblesync.registry import DeviceRegistry
from pyblesync.session import TestSession, TestSessionManager

__all__ = [
    "__version__",
    "AdvertisementMatcher",
    "BleSyncClient",
    "BleSyncConfigError",
    "BleSyncDecodeError",
    "BleSyncError",
    "BleSyncStorageError",
    "BleSyncTransportError",
    "BleakRadio",
    "CalibrationOffset",
    "CaptureResult",
    "CaptureSession",
    "CaptureStart",
    "ConnectionState",
    "ConnectionStatus",
    "DecodedTelemetry",
    "DeviceRegistry",
    "FeedResult",
    "MatchedPacket",
    "NeighborObservation",
    "PendingMessage",
    "ProfileSample",
    "ProtocolKind",
    "ProtocolTemplate",
    "Radio",
    "RawAdvertisement",
    "ScanFilter",
    "SyncConfig",
    "TestSession",
    "TestSessionManager",
]
