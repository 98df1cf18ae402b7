"""Connection supervision state."""

from __future__ import annotations

from enum import StrEnum

from pyblesync.models._base import BleSyncModel


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class ConnectionStatus(BleSyncModel):
    """Immutable snapshot of the supervisor, handed to observers.

    ``attempt`` is the ``n`` of ``RECONNECTING(n)``; it is ``0`` in every
    other state except ``FAILED``, where it holds the exhausted attempt count.
    """

    state: ConnectionState = ConnectionState.DISCONNECTED
    attempt: int = 0
    network_available: bool = True
    suspended: bool = False
    detail: str = ""

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED
