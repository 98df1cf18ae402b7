"""Internal sync coordination for BleSyncClient.

Owns:
- the MQTT channel, its supervisor and the offline outbox
- translating inbound publishes into merge-store messages
- the initial data request issued after each connect
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from pyblesync._client.outbox import OfflineOutbox, PublishOutcome
from pyblesync._client.supervisor import ConnectionSupervisor
from pyblesync._mqtt import InboundMessage, SupportsSync, SyncChannel
from pyblesync.config import SyncConfig
from pyblesync.ingestion.topics import Topics
from pyblesync.ingestion.wire import decode_inbound
from pyblesync.matcher import AdvertisementMatcher
from pyblesync.state.events import SyncMessage

OUTBOX_FILE = "outbox.json"


class SyncCoordinator:
    def __init__(
        self,
        *,
        config: SyncConfig,
        topics: Topics,
        matcher: AdvertisementMatcher,
        on_sync_message: Callable[[SyncMessage], None],
        channel: SupportsSync | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._topics = topics
        self._matcher = matcher
        self._on_sync_message = on_sync_message
        self._logger = logger or logging.getLogger(__name__)
        self._channel: SupportsSync = channel or SyncChannel(config, logger=self._logger)
        self.supervisor = ConnectionSupervisor(
            self._channel,
            subscriptions=topics.subscriptions(),
            on_message=self._on_message,
            max_attempts=config.max_reconnect_attempts,
            retry_delay=config.reconnect_delay,
            probe_interval=config.probe_interval,
            probe_topic=topics.probe(config.client_id),
        )
        self.outbox = OfflineOutbox(
            config.storage_dir / OUTBOX_FILE,
            self._channel,
            is_connected=lambda: self.supervisor.is_connected,
            dispatch_delay=config.flush_delay,
        )
        self.supervisor.add_connected_hook(self._flush_outbox)
        self.supervisor.add_connected_hook(self.request_initial_data)

    @property
    def channel(self) -> SupportsSync:
        return self._channel

    async def start(self) -> None:
        await self.supervisor.start()

    async def stop(self) -> None:
        await self.supervisor.stop()

    async def publish(self, topic: str, payload: str) -> PublishOutcome:
        return await self.outbox.publish(topic, payload)

    async def _flush_outbox(self) -> None:
        await self.outbox.flush()

    async def request_initial_data(self) -> None:
        """Ask peers for the current calibration, log and suggestion sets.

        Requests are only meaningful on a live connection and are never queued.
        """
        if not self.supervisor.is_connected:
            self._logger.debug("Skipping initial data request while offline")
            return
        topics = [self._topics.calibration.request, self._topics.log.request]
        topics.extend(self._topics.suggestion(t).request for t in self._config.suggestion_types)
        for topic in topics:
            result = await self._channel.publish(topic, self._config.client_id)
            if not result.success:
                self._logger.warning("Initial data request on %s failed: %s", topic, result.reason)

    def _on_message(self, message: InboundMessage) -> None:
        messages = decode_inbound(message.topic, message.payload, topics=self._topics, matcher=self._matcher)
        self._logger.debug("Inbound %s decoded into %d message(s)", message.topic, len(messages))
        for item in messages:
            self._on_sync_message(item)
