from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pyblesync.session import TestSessionManager

TZ = timezone(timedelta(hours=2))


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def test_token_is_local_timestamp() -> None:
    clock = _Clock(datetime(2026, 3, 4, 5, 6, 7, tzinfo=TZ))
    manager = TestSessionManager(clock=clock)
    assert manager.current_id() == "20260304_050607"


def test_activity_keeps_token_alive() -> None:
    clock = _Clock(datetime(2026, 3, 4, 5, 6, 7, tzinfo=TZ))
    manager = TestSessionManager(idle_threshold=1800, clock=clock)
    first = manager.current_id()

    for _ in range(5):
        clock.advance(1700)
        assert manager.current_id() == first


def test_idle_beyond_threshold_rotates() -> None:
    clock = _Clock(datetime(2026, 3, 4, 5, 6, 7, tzinfo=TZ))
    manager = TestSessionManager(idle_threshold=1800, clock=clock)
    first = manager.current_id()

    clock.advance(1800)
    assert manager.current_id() == first

    clock.advance(1801)
    rotated = manager.current_id()
    assert rotated != first
    assert rotated == clock.now.strftime("%Y%m%d_%H%M%S")
    assert manager.session.last_activity == clock.now


def test_explicit_rotate_returns_new_token() -> None:
    clock = _Clock(datetime(2026, 3, 4, 5, 6, 7, tzinfo=TZ))
    manager = TestSessionManager(clock=clock)
    clock.advance(10)
    assert manager.rotate() == "20260304_050617"
    assert manager.current_id() == "20260304_050617"
