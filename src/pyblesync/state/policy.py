"""Deterministic merge policies.

Two policies coexist by entity kind:

- Scalar records (calibration offsets): last write wins by timestamp.
- History records (telemetry logs): neighbor observations accumulate, scalar
  fields follow the incoming record.

History lists are concatenated without deduplication or windowing, so they
grow with every merge. Consumers rely on full-history reception counts.
"""

from __future__ import annotations

from typing import Literal

from pyblesync.models.advertisement import MatchedPacket
from pyblesync.models.calibration import CalibrationOffset

HistoryKeying = Literal["device", "group"]


def resolve_last_write(existing: CalibrationOffset | None, incoming: CalibrationOffset) -> CalibrationOffset:
    """Return *incoming* iff nothing is held or it is strictly newer."""
    if existing is None:
        return incoming
    if incoming.timestamp > existing.timestamp:
        return incoming
    return existing


def merge_history(existing: MatchedPacket | None, incoming: MatchedPacket) -> MatchedPacket:
    """Combine a stored history record with a newer observation.

    - nothing stored: the incoming record as-is
    - incoming carries no telemetry: the stored record is kept unchanged
    - stored record carries no telemetry: the incoming record replaces it
    - both carry telemetry: the incoming record with the stored neighbor
      observations prepended to its own
    """
    if existing is None:
        return incoming
    if incoming.decoded is None:
        return existing
    if existing.decoded is None:
        return incoming

    combined = [*existing.decoded.neighbors, *incoming.decoded.neighbors]
    decoded = incoming.decoded.model_copy(update={"neighbors": combined})
    return incoming.model_copy(update={"decoded": decoded})


def history_key(record: MatchedPacket, keying: HistoryKeying = "device") -> str:
    """Key under which a history record is stored."""
    if keying == "group" and record.group_id:
        return record.group_id
    return record.device_id


def is_echo(existing: MatchedPacket | None, incoming: MatchedPacket) -> bool:
    """Whether *incoming* is the same observation the store already holds.

    The wire format carries whole seconds, so timestamps are compared at
    that resolution.
    """
    if existing is None:
        return False
    return existing.raw_hex == incoming.raw_hex and existing.observed_at.replace(
        microsecond=0
    ) == incoming.observed_at.replace(microsecond=0)
