"""Plain-text wire payloads.

Calibration and log payloads are flat comma-separated triples, possibly
several records in one message. A payload whose field count is not a
multiple of three is dropped whole; an individual triple that fails to
parse is skipped.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from pyblesync import _constants as const
from pyblesync._telemetry import parse_hex
from pyblesync.exceptions import BleSyncDecodeError
from pyblesync.ingestion.topics import Topics
from pyblesync.matcher import AdvertisementMatcher
from pyblesync.models._base import utcnow
from pyblesync.models.advertisement import MatchedPacket
from pyblesync.models.calibration import CalibrationOffset
from pyblesync.state.events import (
    CalibrationDelete,
    CalibrationUpdate,
    LogDelete,
    LogUpdate,
    SuggestionUpdate,
    SyncMessage,
)

_logger = logging.getLogger(__name__)

REMOTE_DEVICE_NAME = "N/A (from MQTT)"


def _triples(payload: str) -> list[tuple[str, str, str]]:
    parts = [p.strip() for p in payload.split(",")] if payload.strip() else []
    if len(parts) % 3:
        raise BleSyncDecodeError(f"Expected a multiple of 3 fields, got {len(parts)}")
    return [(parts[i], parts[i + 1], parts[i + 2]) for i in range(0, len(parts), 3)]


# ------------------------------------------------------------------
# Calibration
# ------------------------------------------------------------------


def encode_calibration(offsets: list[CalibrationOffset]) -> str:
    return ",".join(f"{o.device_id},{o.base_altitude},{o.offset}" for o in offsets)


def decode_calibration(payload: str, *, received_at: datetime | None = None) -> list[CalibrationOffset]:
    """Decode ``deviceId,baseAltitude,offset`` triples.

    The wire format carries no timestamp; records are stamped with the
    receipt time.
    """
    stamp = received_at or utcnow()
    offsets: list[CalibrationOffset] = []
    for device_id, altitude, offset in _triples(payload):
        try:
            offsets.append(
                CalibrationOffset(
                    device_id=device_id,
                    base_altitude=float(altitude),
                    offset=float(offset),
                    timestamp=stamp,
                )
            )
        except ValueError:
            _logger.debug("Skipping malformed calibration triple %r", (device_id, altitude, offset))
    return offsets


# ------------------------------------------------------------------
# Telemetry log
# ------------------------------------------------------------------


def format_log_timestamp(value: datetime) -> str:
    return value.astimezone().strftime(const.LOG_TIMESTAMP_FORMAT)


def parse_log_timestamp(text: str) -> datetime:
    """Parse a local-time ``yyyy-MM-dd HH:mm:ss`` stamp into an aware datetime."""
    return datetime.strptime(text, const.LOG_TIMESTAMP_FORMAT).astimezone()


def encode_log(records: list[MatchedPacket]) -> str:
    return ",".join(f"{r.raw_hex},{r.signal_strength},{format_log_timestamp(r.observed_at)}" for r in records)


def decode_log(payload: str, matcher: AdvertisementMatcher) -> list[MatchedPacket]:
    """Decode ``rawHex,signalStrength,timestamp`` triples.

    The raw bytes are classified again so remote records carry the same
    segments and telemetry as locally matched ones.
    """
    records: list[MatchedPacket] = []
    for raw_hex, rssi, stamp in _triples(payload):
        try:
            data = parse_hex(raw_hex)
            packet = matcher.classify(
                data,
                source_id=str(uuid.uuid4()).upper(),
                device_name=REMOTE_DEVICE_NAME,
                signal_strength=int(rssi),
                observed_at=parse_log_timestamp(stamp),
            )
        except (BleSyncDecodeError, ValueError):
            _logger.debug("Skipping malformed log triple %r", (raw_hex, rssi, stamp))
            continue
        if packet is None:
            _logger.debug("Log record matches no protocol template: %s", raw_hex)
            continue
        records.append(packet)
    return records


# ------------------------------------------------------------------
# Suggestions / deletes
# ------------------------------------------------------------------


def encode_suggestions(items: list[str]) -> str:
    return ",".join(items)


def decode_suggestions(payload: str) -> list[str]:
    return [item.strip() for item in payload.split(",") if item.strip()]


def decode_entity_id(payload: str) -> str:
    entity_id = payload.strip()
    if not entity_id:
        raise BleSyncDecodeError("Empty entity id")
    return entity_id


# ------------------------------------------------------------------
# Dispatch
# ------------------------------------------------------------------


def decode_inbound(
    topic: str,
    payload: bytes,
    *,
    topics: Topics,
    matcher: AdvertisementMatcher,
    received_at: datetime | None = None,
) -> list[SyncMessage]:
    """Translate one inbound publish into store messages.

    Unknown topics and undecodable payloads yield an empty list.
    """
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        _logger.debug("Dropping non UTF-8 payload on %s", topic)
        return []

    messages: list[SyncMessage] = []
    try:
        if topic in (topics.calibration.download, topics.calibration.response):
            messages.extend(CalibrationUpdate(offset=o) for o in decode_calibration(text, received_at=received_at))
        elif topic == topics.calibration.delete:
            messages.append(CalibrationDelete(device_id=decode_entity_id(text)))
        elif topic in (topics.log.download, topics.log.response):
            messages.extend(LogUpdate(record=r) for r in decode_log(text, matcher))
        elif topic == topics.log.delete:
            messages.append(LogDelete(record_id=decode_entity_id(text)))
        elif (suggestion_type := topics.suggestion_type_of(topic)) is not None:
            messages.append(SuggestionUpdate(suggestion_type=suggestion_type, items=decode_suggestions(text)))
        else:
            _logger.debug("Ignoring message on unhandled topic %s", topic)
    except BleSyncDecodeError as exc:
        _logger.warning("Dropping malformed payload on %s: %s", topic, exc)
        return []
    return messages
