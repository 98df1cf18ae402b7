"""Custom exception hierarchy for pyblesync."""

from __future__ import annotations


class BleSyncError(Exception):
    """Base exception for all pyblesync errors."""


class BleSyncConfigError(BleSyncError):
    """Invalid or missing configuration.

    Raised at startup only; a client cannot run without broker credentials.
    """


class BleSyncDecodeError(BleSyncError):
    """Malformed advertisement bytes or wire payload."""


class BleSyncStorageError(BleSyncError):
    """Local JSON state could not be read or decoded."""


class BleSyncTransportError(BleSyncError):
    """MQTT-level failure (connect refused, timeout, publish/subscribe error)."""

    def __init__(
        self,
        message: str,
        *,
        topic: str = "",
        reason_code: int | None = None,
    ) -> None:
        self.topic = topic
        self.reason_code = reason_code
        super().__init__(message)
