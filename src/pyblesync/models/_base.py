"""Base model shared by pyblesync data models.

Every model inherits from :class:`BleSyncModel` which provides:

* ``frozen=True`` so snapshots handed to observers cannot be mutated;
  updates go through ``model_copy(update=...)``.
* ``extra="ignore"`` so persisted records written by newer versions still load.

Timestamps use :data:`AwareDatetime`, which attaches UTC to naive values so
every comparison in the merge and staleness logic is between aware datetimes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict


def ensure_aware(value: datetime) -> datetime:
    """Return *value* with UTC attached when it carries no tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def utcnow() -> datetime:
    return datetime.now(UTC)


AwareDatetime = Annotated[datetime, AfterValidator(ensure_aware)]
"""Datetime coerced to timezone-aware (naive values are taken as UTC)."""


class BleSyncModel(BaseModel):
    """Base for pyblesync records."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )
