from __future__ import annotations

from collections.abc import Callable

import pytest

from pyblesync._mqtt import InboundMessage, PublishResult, Subscription
from pyblesync.exceptions import BleSyncTransportError

NEIGHBOR_PAYLOAD_HEX = "1E 00 27 10 05 01 32 02 00 03 64 04 00 05 00"
NEIGHBOR_ADVERTISEMENT = bytes.fromhex("FF" * 13 + NEIGHBOR_PAYLOAD_HEX.replace(" ", "") + "07")


def profile_advertisement(phone_rssi: int, device_byte: int = 9) -> bytes:
    return b"\x00" * 27 + phone_rssi.to_bytes(1, "big", signed=True) + bytes([device_byte])


class FakeChannel:
    """In-memory stand-in for the MQTT channel."""

    def __init__(self) -> None:
        self.connected = False
        self.fail_connect = False
        self.connect_calls = 0
        self.published: list[tuple[str, str]] = []
        self.fail_topics: set[str] = set()
        self.refuse_subscribe: set[str] = set()
        self.subscribed: list[str] = []
        self.unsubscribed: list[str] = []
        self._subscriptions: list[Subscription] = []
        self._listeners: list[Callable[[str], None]] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    def _close_all(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.close()

    async def connect(self) -> None:
        self.connect_calls += 1
        self._close_all()
        if self.fail_connect:
            self.connected = False
            raise BleSyncTransportError("Connection refused")
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False
        self._close_all()

    async def publish(self, topic: str, payload: str) -> PublishResult:
        if not self.connected:
            return PublishResult(success=False, reason="not connected")
        if topic in self.fail_topics:
            return PublishResult(success=False, reason="rejected")
        self.published.append((topic, payload))
        return PublishResult(success=True)

    async def subscribe(self, pattern: str) -> Subscription:
        if not self.connected or pattern in self.refuse_subscribe:
            raise BleSyncTransportError("Subscribe failed", topic=pattern)
        self.subscribed.append(pattern)
        subscription = Subscription(pattern)
        self._subscriptions.append(subscription)
        return subscription

    async def unsubscribe(self, pattern: str) -> None:
        if not self.connected:
            raise BleSyncTransportError("Unsubscribe failed", topic=pattern)
        self.unsubscribed.append(pattern)
        for subscription in [s for s in self._subscriptions if s.pattern == pattern]:
            subscription.close()
            self._subscriptions.remove(subscription)

    def add_disconnect_listener(self, callback: Callable[[str], None]) -> None:
        self._listeners.append(callback)

    def deliver(self, topic: str, payload: bytes) -> None:
        message = InboundMessage(topic=topic, payload=payload)
        for subscription in list(self._subscriptions):
            subscription.deliver(message)

    def drop(self, reason: str = "connection lost") -> None:
        self.connected = False
        self._close_all()
        for listener in list(self._listeners):
            listener(reason)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()
