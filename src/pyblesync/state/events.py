"""Tagged sync messages and store notifications.

All inbound wire payloads are converted into these messages by the
ingestion layer. Only the merge store is allowed to apply them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pyblesync.models.advertisement import MatchedPacket
from pyblesync.models.calibration import CalibrationOffset


class EntityFamily(StrEnum):
    CALIBRATION = "calibration"
    LOG = "log"
    SUGGESTION = "suggestion"


class ChangeAction(StrEnum):
    UPDATE = "update"
    DELETE = "delete"


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True)


class CalibrationUpdate(_Message):
    kind: Literal["calibration_update"] = "calibration_update"
    offset: CalibrationOffset


class CalibrationDelete(_Message):
    kind: Literal["calibration_delete"] = "calibration_delete"
    device_id: str

    @field_validator("device_id")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class LogUpdate(_Message):
    kind: Literal["log_update"] = "log_update"
    record: MatchedPacket


class LogDelete(_Message):
    kind: Literal["log_delete"] = "log_delete"
    record_id: str
    """Device id, group token or source id of the record to drop."""

    @field_validator("record_id")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class SuggestionUpdate(_Message):
    kind: Literal["suggestion_update"] = "suggestion_update"
    suggestion_type: str
    items: list[str] = Field(default_factory=list)


SyncMessage = Annotated[
    CalibrationUpdate | CalibrationDelete | LogUpdate | LogDelete | SuggestionUpdate,
    Field(discriminator="kind"),
]


class StoreChange(BaseModel):
    """Notification emitted after the store applied a change."""

    model_config = ConfigDict(frozen=True)

    family: EntityFamily
    action: ChangeAction
    key: str
    remote: bool = False
