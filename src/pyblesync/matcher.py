"""Advertisement classification and decoding.

An advertisement is laid out as ``mask || payload || trailer``. Templates are
tried in priority order (Profile before Neighbor); the first whose mask is an
exact prefix of the bytes wins. Unrecognized advertisements are dropped
without surfacing an error: the radio environment is full of them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from pyblesync import _constants as const
from pyblesync._telemetry import (
    bytes_to_hex,
    decode_neighbor_payload,
    decode_profile_payload,
    format_telemetry,
)
from pyblesync.exceptions import BleSyncDecodeError
from pyblesync.models.advertisement import MatchedPacket, ProtocolKind, RawAdvertisement
from pyblesync.models.telemetry import DecodedTelemetry, ProfileSample

_logger = logging.getLogger(__name__)

# Debounce entries are pruned inside match once this many sources are tracked.
_PRUNE_THRESHOLD = 256


@dataclass(frozen=True)
class ProtocolTemplate:
    """Byte-prefix template naming one protocol kind."""

    kind: ProtocolKind
    mask: bytes
    payload_length: int
    trailer_length: int = const.TRAILER_LENGTH

    @property
    def prefix_length(self) -> int:
        return len(self.mask)

    def matches(self, data: bytes) -> bool:
        if len(data) < self.prefix_length + self.trailer_length:
            return False
        return data[: self.prefix_length] == self.mask


PROFILE_TEMPLATE = ProtocolTemplate(
    kind=ProtocolKind.PROFILE,
    mask=const.PROFILE_MASK,
    payload_length=const.PROFILE_PAYLOAD_LENGTH,
)
NEIGHBOR_TEMPLATE = ProtocolTemplate(
    kind=ProtocolKind.NEIGHBOR,
    mask=const.NEIGHBOR_MASK,
    payload_length=const.NEIGHBOR_PAYLOAD_LENGTH,
)

#: Priority order matters: the first matching template wins.
PROTOCOL_TEMPLATES: tuple[ProtocolTemplate, ...] = (PROFILE_TEMPLATE, NEIGHBOR_TEMPLATE)


def trailer_device_id(trailer: bytes) -> str:
    """Concatenate the decimal value of each trailer byte."""
    return "".join(str(b) for b in trailer)


class AdvertisementMatcher:
    """Turn raw advertisements into :class:`MatchedPacket` records.

    Parameters
    ----------
    templates : tuple[ProtocolTemplate, ...]
        Templates in priority order.
    debounce_window : float
        Events from a ``source_id`` arriving within this many seconds of its
        last accepted event are dropped. Sources mapping to the same device
        are debounced independently.
    test_method : str
        Label copied into decoded Profile samples.
    """

    def __init__(
        self,
        templates: tuple[ProtocolTemplate, ...] = PROTOCOL_TEMPLATES,
        *,
        debounce_window: float = const.DEBOUNCE_WINDOW,
        test_method: str = "default",
    ) -> None:
        self._templates = templates
        self._debounce = timedelta(seconds=debounce_window)
        self._last_accepted: dict[str, datetime] = {}
        self.test_method = test_method

    def reset(self) -> None:
        """Forget debounce history (new discovery session)."""
        self._last_accepted.clear()

    @property
    def tracked_sources(self) -> int:
        return len(self._last_accepted)

    def prune(self, now: datetime) -> int:
        """Drop debounce entries whose window has passed; returns how many were removed."""
        expired = [source for source, last in self._last_accepted.items() if now - last >= self._debounce]
        for source in expired:
            del self._last_accepted[source]
        return len(expired)

    def match(self, raw: RawAdvertisement) -> MatchedPacket | None:
        """Debounce, classify and decode *raw*; ``None`` means dropped."""
        last = self._last_accepted.get(raw.source_id)
        if last is not None and raw.observed_at - last < self._debounce:
            return None
        self._last_accepted[raw.source_id] = raw.observed_at
        if len(self._last_accepted) > _PRUNE_THRESHOLD:
            self.prune(raw.observed_at)

        return self.classify(
            raw.payload,
            source_id=raw.source_id,
            device_name=raw.device_name,
            signal_strength=raw.signal_strength,
            observed_at=raw.observed_at,
        )

    def classify(
        self,
        data: bytes,
        *,
        source_id: str,
        device_name: str,
        signal_strength: int,
        observed_at: datetime,
    ) -> MatchedPacket | None:
        """Pure template evaluation; no debounce state is touched."""
        template = next((t for t in self._templates if t.matches(data)), None)
        if template is None:
            return None

        end = len(data) - template.trailer_length
        payload = data[template.prefix_length : end]
        device_id = trailer_device_id(data[end:])
        if not device_id:
            return None

        decoded: DecodedTelemetry | None = None
        profile: ProfileSample | None = None
        try:
            if template.kind == ProtocolKind.NEIGHBOR:
                decoded = decode_neighbor_payload(payload, observed_at=observed_at)
                _logger.debug("Neighbor packet from device %s\n%s", device_id, format_telemetry(decoded))
            else:
                profile = decode_profile_payload(payload, test_method=self.test_method)
        except BleSyncDecodeError as exc:
            _logger.debug("Matched %s packet from device %s without telemetry: %s", template.kind, device_id, exc)

        return MatchedPacket(
            device_id=device_id,
            source_id=source_id,
            device_name=device_name,
            signal_strength=signal_strength,
            raw_hex=bytes_to_hex(data),
            mask_hex=bytes_to_hex(template.mask),
            payload_hex=bytes_to_hex(payload),
            protocol_kind=template.kind,
            observed_at=observed_at,
            decoded=decoded,
            profile=profile,
        )
