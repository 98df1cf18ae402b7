"""Capture session results."""

from __future__ import annotations

from pydantic import Field

from pyblesync.models._base import BleSyncModel


class CaptureResult(BleSyncModel):
    """Averages over one completed capture session."""

    target_id: str
    avg_tx: float
    avg_rx: float
    txs: list[int] = Field(default_factory=list)
    rxs: list[int] = Field(default_factory=list)
