"""Offline outbox entries."""

from __future__ import annotations

from pydantic import Field

from pyblesync.models._base import AwareDatetime, BleSyncModel, utcnow


class PendingMessage(BleSyncModel):
    topic: str
    payload: str
    enqueued_at: AwareDatetime = Field(default_factory=utcnow)
