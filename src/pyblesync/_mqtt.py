"""Internal MQTT channel: a threaded paho-mqtt client bridged onto asyncio."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt

from pyblesync._redact import redact_for_log
from pyblesync.config import SyncConfig
from pyblesync.exceptions import BleSyncTransportError


@dataclass(frozen=True)
class InboundMessage:
    """One PUBLISH received from the broker."""

    topic: str
    payload: bytes


@dataclass(frozen=True)
class PublishResult:
    success: bool
    reason: str = ""


class Subscription:
    """Async iterator over inbound messages matching one topic filter.

    Iteration ends when the subscription is closed, either by
    ``unsubscribe`` or because the underlying connection went away.
    """

    def __init__(self, pattern: str) -> None:
        self.pattern = pattern
        self._queue: asyncio.Queue[InboundMessage | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, topic: str) -> bool:
        return mqtt.topic_matches_sub(self.pattern, topic)

    def deliver(self, message: InboundMessage) -> None:
        if not self._closed and self.matches(message.topic):
            self._queue.put_nowait(message)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> InboundMessage:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item


class SupportsSync(Protocol):
    """What the supervisor and the outbox need from a broker connection."""

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def publish(self, topic: str, payload: str) -> PublishResult: ...

    async def subscribe(self, pattern: str) -> Subscription: ...

    async def unsubscribe(self, pattern: str) -> None: ...

    def add_disconnect_listener(self, callback: Callable[[str], None]) -> None: ...


class SyncChannel:
    """Threaded paho-mqtt client whose callbacks are marshalled onto an asyncio loop.

    The channel carries no business logic. Publishes use QoS 1 and report
    failure through :class:`PublishResult` instead of raising; connect,
    subscribe and unsubscribe raise :class:`BleSyncTransportError`.
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._loop = loop
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._connected = False
        self._closing = False
        self._subscriptions: list[Subscription] = []
        self._pending_acks: dict[int, asyncio.Future[None]] = {}
        self._connect_future: asyncio.Future[None] | None = None
        self._disconnect_listeners: list[Callable[[str], None]] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    def add_disconnect_listener(self, callback: Callable[[str], None]) -> None:
        """Register *callback(reason)* for connection losses not requested locally."""
        self._disconnect_listeners.append(callback)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _build_client(self, loop: asyncio.AbstractEventLoop) -> mqtt.Client:
        config = self._config
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            protocol=mqtt.MQTTv311,
            clean_session=True,
        )
        client.enable_logger(self._logger)
        client.username_pw_set(config.username, config.password)
        if config.tls:
            client.tls_set()

        def on_connect(c: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any) -> None:
            loop.call_soon_threadsafe(self._on_connect, c, reason_code.value, str(reason_code))

        def on_disconnect(
            c: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            loop.call_soon_threadsafe(self._on_disconnect, c, str(reason_code))

        def on_message(c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            message = InboundMessage(topic=msg.topic, payload=bytes(msg.payload))
            loop.call_soon_threadsafe(self._on_message, c, message)

        def on_ack(c: mqtt.Client, _userdata: Any, mid: int, reason_codes: Any, _properties: Any) -> None:
            codes = reason_codes if isinstance(reason_codes, list) else [reason_codes]
            failed = [str(rc) for rc in codes if getattr(rc, "value", 0) >= 0x80]
            loop.call_soon_threadsafe(self._on_ack, c, mid, failed)

        client.on_connect = on_connect
        client.on_disconnect = on_disconnect
        client.on_message = on_message
        client.on_subscribe = on_ack
        client.on_unsubscribe = on_ack
        return client

    async def connect(self) -> None:
        """Open a fresh broker session and wait for CONNACK.

        Any previous session is torn down first; its subscriptions are closed.
        """
        loop = self._get_loop()
        await self._teardown()
        config = self._config
        self._logger.debug(
            "MQTT connect requested %s",
            redact_for_log(
                {
                    "host": config.broker_host,
                    "port": config.broker_port,
                    "client_id": config.client_id,
                    "username": config.username,
                    "tls": config.tls,
                }
            ),
        )

        client = self._build_client(loop)
        self._client = client
        self._closing = False
        future: asyncio.Future[None] = loop.create_future()
        self._connect_future = future
        try:
            await loop.run_in_executor(
                None, client.connect, config.broker_host, config.broker_port, config.keepalive
            )
        except (OSError, ValueError) as exc:
            self._client = None
            self._connect_future = None
            raise BleSyncTransportError(f"Cannot reach broker {config.broker_host}:{config.broker_port}: {exc}") from exc

        client.loop_start()
        try:
            await asyncio.wait_for(future, timeout=config.connect_timeout)
        except TimeoutError as exc:
            await self._teardown()
            raise BleSyncTransportError("Timed out waiting for CONNACK") from exc
        except BleSyncTransportError:
            await self._teardown()
            raise
        finally:
            self._connect_future = None
        self._logger.debug("MQTT connected %s", redact_for_log({"host": config.broker_host, "client_id": config.client_id}))

    async def disconnect(self) -> None:
        """Close the session; no disconnect listeners are notified."""
        await self._teardown()

    async def _teardown(self) -> None:
        client = self._client
        self._client = None
        self._connected = False
        self._closing = True
        self._fail_pending("Connection closed")
        self._close_subscriptions()
        if client is None:
            return
        loop = self._get_loop()
        try:
            self._logger.debug("MQTT disconnect requested")
            client.disconnect()
        finally:
            await loop.run_in_executor(None, client.loop_stop)
            self._logger.debug("MQTT network loop stopped")

    def _close_subscriptions(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.close()

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending_acks = self._pending_acks, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(BleSyncTransportError(reason))

    # ------------------------------------------------------------------
    # Loop-side callback handlers
    # ------------------------------------------------------------------

    def _on_connect(self, client: mqtt.Client, code: int, reason: str) -> None:
        if client is not self._client:
            return
        future = self._connect_future
        if code != 0:
            self._logger.warning("MQTT connect refused: %s", reason)
            if future is not None and not future.done():
                future.set_exception(BleSyncTransportError(f"Connection refused: {reason}", reason_code=code))
            return
        self._connected = True
        if future is not None and not future.done():
            future.set_result(None)

    def _on_disconnect(self, client: mqtt.Client, reason: str) -> None:
        if client is not self._client:
            return
        was_connected = self._connected
        self._connected = False
        future = self._connect_future
        if future is not None and not future.done():
            future.set_exception(BleSyncTransportError(f"Disconnected during connect: {reason}"))
        self._fail_pending(f"Disconnected: {reason}")
        self._close_subscriptions()
        if self._closing or not was_connected:
            return
        self._logger.info("MQTT connection lost: %s", reason)
        for listener in list(self._disconnect_listeners):
            listener(reason)

    def _on_message(self, client: mqtt.Client, message: InboundMessage) -> None:
        if client is not self._client:
            return
        self._logger.debug("Received PUBLISH topic=%s bytes=%d", message.topic, len(message.payload))
        for subscription in list(self._subscriptions):
            subscription.deliver(message)

    def _on_ack(self, client: mqtt.Client, mid: int, failed: list[str]) -> None:
        if client is not self._client:
            return
        future = self._pending_acks.pop(mid, None)
        if future is None or future.done():
            return
        if failed:
            future.set_exception(BleSyncTransportError(f"Broker rejected request: {', '.join(failed)}"))
        else:
            future.set_result(None)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _require_client(self) -> mqtt.Client:
        client = self._client
        if client is None or not self._connected:
            raise BleSyncTransportError("Not connected")
        return client

    async def _await_ack(self, mid: int, topic: str) -> None:
        future: asyncio.Future[None] = self._get_loop().create_future()
        self._pending_acks[mid] = future
        try:
            await asyncio.wait_for(future, timeout=self._config.connect_timeout)
        except TimeoutError as exc:
            self._pending_acks.pop(mid, None)
            raise BleSyncTransportError("Timed out waiting for broker acknowledgement", topic=topic) from exc

    async def subscribe(self, pattern: str) -> Subscription:
        """Subscribe at QoS 1 and wait for SUBACK."""
        client = self._require_client()
        result, mid = client.subscribe(pattern, qos=1)
        if result != mqtt.MQTT_ERR_SUCCESS or mid is None:
            raise BleSyncTransportError(f"Subscribe failed: {mqtt.error_string(result)}", topic=pattern)
        subscription = Subscription(pattern)
        self._subscriptions.append(subscription)
        try:
            await self._await_ack(mid, pattern)
        except BleSyncTransportError:
            subscription.close()
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
            raise
        self._logger.debug("MQTT subscribed topic=%s", pattern)
        return subscription

    async def unsubscribe(self, pattern: str) -> None:
        client = self._require_client()
        result, mid = client.unsubscribe(pattern)
        for subscription in [s for s in self._subscriptions if s.pattern == pattern]:
            subscription.close()
            self._subscriptions.remove(subscription)
        if result != mqtt.MQTT_ERR_SUCCESS or mid is None:
            raise BleSyncTransportError(f"Unsubscribe failed: {mqtt.error_string(result)}", topic=pattern)
        await self._await_ack(mid, pattern)

    async def publish(self, topic: str, payload: str) -> PublishResult:
        """Publish at QoS 1 and wait until the broker acknowledges it."""
        client = self._client
        if client is None or not self._connected:
            return PublishResult(success=False, reason="not connected")
        try:
            info = client.publish(topic, payload, qos=1)
        except ValueError as exc:
            return PublishResult(success=False, reason=str(exc))
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            return PublishResult(success=False, reason=mqtt.error_string(info.rc))
        try:
            await self._get_loop().run_in_executor(None, info.wait_for_publish, self._config.connect_timeout)
        except (RuntimeError, ValueError) as exc:
            return PublishResult(success=False, reason=str(exc))
        if not info.is_published():
            return PublishResult(success=False, reason="publish not acknowledged")
        self._logger.debug("Published topic=%s bytes=%d", topic, len(payload))
        return PublishResult(success=True)
