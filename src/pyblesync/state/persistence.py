"""JSON files backing the local state.

Each collection lives in its own file under the storage directory. Reads
that fail (missing file, corrupt JSON, schema mismatch) yield an empty
collection; writes replace the file atomically.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, TypeVar

from pydantic import TypeAdapter, ValidationError

from pyblesync.exceptions import BleSyncStorageError
from pyblesync.models.advertisement import MatchedPacket
from pyblesync.models.calibration import CalibrationOffset

_logger = logging.getLogger(__name__)

T = TypeVar("T")

PACKETS_ADAPTER: TypeAdapter[list[MatchedPacket]] = TypeAdapter(list[MatchedPacket])
CALIBRATION_ADAPTER: TypeAdapter[dict[str, CalibrationOffset]] = TypeAdapter(dict[str, CalibrationOffset])
SUGGESTIONS_ADAPTER: TypeAdapter[dict[str, list[str]]] = TypeAdapter(dict[str, list[str]])
OFFSET_EXPORT_ADAPTER: TypeAdapter[list[CalibrationOffset]] = TypeAdapter(list[CalibrationOffset])


def read_json_file(path: Path, adapter: TypeAdapter[T]) -> T | None:
    """Decode *path* with *adapter*; ``None`` when the file does not exist."""
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise BleSyncStorageError(f"Cannot read {path}: {exc}") from exc
    try:
        return adapter.validate_json(data)
    except ValidationError as exc:
        raise BleSyncStorageError(f"Invalid JSON state in {path}: {exc.error_count()} error(s)") from exc


def write_json_file(path: Path, adapter: TypeAdapter[Any], value: Any) -> None:
    """Serialize *value* and atomically replace *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp")
    tmp.write_bytes(adapter.dump_json(value, indent=2))
    os.replace(tmp, path)


class JsonStorage:
    """Local persisted state: packet log, calibration offsets, suggestion lists."""

    PACKETS_FILE = "packets.json"
    CALIBRATION_FILE = "calibration.json"
    SUGGESTIONS_FILE = "suggestions.json"

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _load(self, name: str, adapter: TypeAdapter[T], empty: T) -> T:
        path = self._dir / name
        try:
            value = read_json_file(path, adapter)
        except BleSyncStorageError:
            _logger.warning("Discarding unreadable local state %s", path, exc_info=True)
            return empty
        return empty if value is None else value

    def _save(self, name: str, adapter: TypeAdapter[Any], value: Any) -> None:
        path = self._dir / name
        try:
            write_json_file(path, adapter, value)
        except OSError:
            _logger.warning("Failed to persist %s", path, exc_info=True)

    def load_packets(self) -> list[MatchedPacket]:
        return self._load(self.PACKETS_FILE, PACKETS_ADAPTER, [])

    def save_packets(self, packets: list[MatchedPacket]) -> None:
        self._save(self.PACKETS_FILE, PACKETS_ADAPTER, packets)

    def load_calibration(self) -> dict[str, CalibrationOffset]:
        return self._load(self.CALIBRATION_FILE, CALIBRATION_ADAPTER, {})

    def save_calibration(self, offsets: dict[str, CalibrationOffset]) -> None:
        self._save(self.CALIBRATION_FILE, CALIBRATION_ADAPTER, offsets)

    def load_suggestions(self) -> dict[str, list[str]]:
        return self._load(self.SUGGESTIONS_FILE, SUGGESTIONS_ADAPTER, {})

    def save_suggestions(self, suggestions: dict[str, list[str]]) -> None:
        self._save(self.SUGGESTIONS_FILE, SUGGESTIONS_ADAPTER, suggestions)


def export_offsets_json(offsets: list[CalibrationOffset]) -> str:
    """Serialize *offsets* as a pretty-printed JSON array."""
    return OFFSET_EXPORT_ADAPTER.dump_json(offsets, indent=2).decode()


def import_offsets_json(text: str | bytes) -> list[CalibrationOffset]:
    """Parse a JSON array written by :func:`export_offsets_json`.

    Raises
    ------
    BleSyncStorageError
        When *text* is not a valid offset array.
    """
    try:
        return OFFSET_EXPORT_ADAPTER.validate_json(text)
    except ValidationError as exc:
        raise BleSyncStorageError(f"Invalid calibration export: {exc.error_count()} error(s)") from exc
