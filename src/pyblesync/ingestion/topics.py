"""Wire topic layout.

Each entity family has an upload/delete/download/request quadruplet;
responses to a request arrive on ``<request>/response``. Suggestion lists
use one extra path segment for their type, subscribed with a single-level
wildcard.
"""

from __future__ import annotations

from dataclasses import dataclass

_CALIBRATION_BASE = "calibration/offset"
_LOG_BASE = "log/scanner"
_SUGGESTION_BASE = "suggestion"


@dataclass(frozen=True)
class TopicSet:
    upload: str
    delete: str
    download: str
    request: str

    @classmethod
    def for_base(cls, base: str) -> TopicSet:
        return cls(
            upload=f"{base}/upload",
            delete=f"{base}/delete",
            download=f"{base}/download",
            request=f"{base}/request",
        )

    @property
    def response(self) -> str:
        return f"{self.request}/response"


class Topics:
    """Topic names, optionally below a common root."""

    def __init__(self, root: str = "") -> None:
        self._root = root.strip("/")
        self.calibration = TopicSet.for_base(self._join(_CALIBRATION_BASE))
        self.log = TopicSet.for_base(self._join(_LOG_BASE))

    def _join(self, path: str) -> str:
        return f"{self._root}/{path}" if self._root else path

    def suggestion(self, suggestion_type: str) -> TopicSet:
        return TopicSet.for_base(self._join(f"{_SUGGESTION_BASE}/{suggestion_type}"))

    @property
    def suggestion_download_filter(self) -> str:
        return self._join(f"{_SUGGESTION_BASE}/+/download")

    def probe(self, client_id: str) -> str:
        """Private topic used by the liveness probe."""
        return self._join(f"probe/{client_id}")

    def subscriptions(self) -> list[str]:
        return [
            self.calibration.download,
            self.calibration.response,
            self.calibration.delete,
            self.log.download,
            self.log.response,
            self.log.delete,
            self.suggestion_download_filter,
        ]

    def suggestion_type_of(self, topic: str) -> str | None:
        """Return ``{type}`` when *topic* is a suggestion download topic."""
        prefix = self._join(f"{_SUGGESTION_BASE}/")
        if not topic.startswith(prefix) or not topic.endswith("/download"):
            return None
        middle = topic[len(prefix) : -len("/download")]
        if not middle or "/" in middle:
            return None
        return middle
