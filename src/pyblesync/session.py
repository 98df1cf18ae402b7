"""Test group tokens with idle-timeout rollover."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict

from pyblesync import _constants as const

_logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class TestSession(BaseModel):
    """Current test group token.

    Parameters
    ----------
    token : str
        Time-derived identifier (``YYYYMMDD_HHMMSS``) tagging one batch of
        telemetry.
    last_activity : datetime
        When the token was last read or rotated.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    token: str
    last_activity: datetime

    def idle_for(self, now: datetime) -> float:
        """Seconds since the token was last used."""
        return (now - self.last_activity).total_seconds()


class TestSessionManager:
    """Issues the group token attached to matched packets.

    Passed explicitly to the components that tag telemetry. Every
    :meth:`current_id` call is also a keep-alive; a token idle for longer than
    ``idle_threshold`` seconds is replaced before being returned.
    """

    __test__ = False

    def __init__(
        self,
        idle_threshold: float = const.IDLE_ROTATION,
        *,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self._idle_threshold = timedelta(seconds=idle_threshold)
        self._clock = clock
        self._session = self._new_session()
        _logger.debug("Test session initialized token=%s", self._session.token)

    def _new_session(self) -> TestSession:
        now = self._clock()
        return TestSession(token=now.strftime(const.TEST_TOKEN_FORMAT), last_activity=now)

    @property
    def session(self) -> TestSession:
        return self._session

    def current_id(self) -> str:
        now = self._clock()
        if now - self._session.last_activity > self._idle_threshold:
            _logger.info("Test session %s idle beyond threshold, rotating", self._session.token)
            self.rotate()
        self._session = self._session.model_copy(update={"last_activity": now})
        return self._session.token

    def rotate(self) -> str:
        """Start a new logical batch and return its token."""
        self._session = self._new_session()
        _logger.info("New test session token=%s", self._session.token)
        return self._session.token
