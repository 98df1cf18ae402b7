"""Connection supervision for the sync channel.

Owns:
- the connect / reconnect state machine and its attempt counter
- the periodic liveness probe
- re-subscribing and pumping inbound messages after every (re)connect
- suspend/resume and network-path hints
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Sequence

from pyblesync import _constants as const
from pyblesync._mqtt import InboundMessage, SupportsSync, Subscription
from pyblesync.exceptions import BleSyncTransportError
from pyblesync.models.connection import ConnectionState, ConnectionStatus

_logger = logging.getLogger(__name__)

ConnectedHook = Callable[[], Awaitable[None]]


class ConnectionSupervisor:
    """Keeps a :class:`SupportsSync` channel connected and subscribed.

    ``DISCONNECTED -> CONNECTED`` on a successful connect with all
    subscriptions acknowledged. A lost connection (transport close or failed
    probe) enters ``RECONNECTING(1)``; attempt ``n`` runs immediately and each
    later attempt follows ``retry_delay``. After ``max_attempts`` failures the
    supervisor reports ``FAILED`` and stays there until ``force_reconnect``
    or a network link coming back.
    """

    def __init__(
        self,
        channel: SupportsSync,
        *,
        subscriptions: Sequence[str],
        on_message: Callable[[InboundMessage], None] | None = None,
        max_attempts: int = const.MAX_RECONNECT_ATTEMPTS,
        retry_delay: float = const.RECONNECT_DELAY,
        probe_interval: float = const.PROBE_INTERVAL,
        probe_topic: str = "probe",
    ) -> None:
        self._channel = channel
        self._subscriptions = list(subscriptions)
        self._on_message = on_message
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._probe_interval = probe_interval
        self._probe_topic = probe_topic

        self._status = ConnectionStatus()
        self._listeners: list[Callable[[ConnectionStatus], None]] = []
        self._hooks: list[ConnectedHook] = []
        self._running = False
        self._wake = asyncio.Event()
        self._awake = asyncio.Event()
        self._awake.set()
        self._probe_lock = asyncio.Lock()
        self._reset_requested = False
        self._deferred_loss: str | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._probe_task: asyncio.Task[None] | None = None
        self._pumps: set[asyncio.Task[None]] = set()
        self._side_tasks: set[asyncio.Task[None]] = set()
        channel.add_disconnect_listener(self._on_transport_closed)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status.is_connected

    def add_listener(self, callback: Callable[[ConnectionStatus], None]) -> None:
        self._listeners.append(callback)

    def add_connected_hook(self, hook: ConnectedHook) -> None:
        """Run *hook* after every transition into ``CONNECTED``, in registration order."""
        self._hooks.append(hook)

    def _update(self, **changes: object) -> None:
        status = self._status.model_copy(update=changes)
        if status == self._status:
            return
        self._status = status
        _logger.debug("Connection status %s attempt=%d detail=%s", status.state, status.attempt, status.detail)
        for listener in list(self._listeners):
            listener(status)

    def _set_state(self, state: ConnectionState, *, attempt: int = 0, detail: str = "") -> None:
        self._update(state=state, attempt=attempt, detail=detail)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect once; on failure the reconnect cycle continues in the background."""
        if self._running:
            return
        self._running = True
        self._probe_task = asyncio.create_task(self._probe_loop())
        self._set_state(ConnectionState.CONNECTING)
        error = await self._attempt()
        if error is None:
            await asyncio.wait([self._enter_connected()])
            return
        _logger.warning("Initial broker connection failed: %s", error)
        self._spawn_reconnect(immediate=False)

    async def stop(self) -> None:
        self._running = False
        tasks = [t for t in (self._reconnect_task, self._probe_task) if t is not None]
        tasks.extend(self._pumps)
        tasks.extend(self._side_tasks)
        self._reconnect_task = None
        self._probe_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._pumps.clear()
        self._side_tasks.clear()
        await self._channel.disconnect()
        self._set_state(ConnectionState.DISCONNECTED)

    # ------------------------------------------------------------------
    # External triggers
    # ------------------------------------------------------------------

    def force_reconnect(self) -> None:
        """Restart the reconnect cycle with the attempt counter reset."""
        if not self._running:
            return
        if self._status.state == ConnectionState.CONNECTED:
            _logger.debug("Forced reconnect ignored while connected")
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reset_requested = True
            self._wake.set()
            return
        self._spawn_reconnect(immediate=True)

    def network_changed(self, available: bool) -> None:
        """Network-path hint; a link coming back short-circuits the retry delay."""
        was_available = self._status.network_available
        self._update(network_available=available)
        if available and not was_available and self._status.state in (
            ConnectionState.FAILED,
            ConnectionState.RECONNECTING,
        ):
            _logger.info("Network available again, reconnecting now")
            self.force_reconnect()

    def suspend(self) -> None:
        """Pause probing and reconnecting until :meth:`resume`."""
        self._awake.clear()
        self._update(suspended=True)

    def resume(self) -> None:
        self._awake.set()
        self._update(suspended=False)
        if self._running:
            task = asyncio.create_task(self.check_now())
            self._side_tasks.add(task)
            task.add_done_callback(self._side_tasks.discard)

    async def check_now(self) -> None:
        """Run one status check: replay a deferred loss or probe the link."""
        if not self._running or self._status.suspended:
            return
        if self._status.state != ConnectionState.CONNECTED:
            self._deferred_loss = None
            return
        reason = self._deferred_loss
        self._deferred_loss = None
        if reason is None and not self._channel.is_connected:
            reason = "transport not connected"
        if reason is None and not await self._probe():
            reason = "liveness probe failed"
        if reason is not None:
            self._connection_lost(reason)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_transport_closed(self, reason: str) -> None:
        if not self._running or self._status.state != ConnectionState.CONNECTED:
            return
        if self._status.suspended:
            self._deferred_loss = reason
            return
        self._connection_lost(reason)

    def _connection_lost(self, reason: str) -> None:
        if self._status.state != ConnectionState.CONNECTED:
            return
        _logger.info("Broker connection lost: %s", reason)
        self._spawn_reconnect(immediate=True, detail=reason)

    def _spawn_reconnect(self, *, immediate: bool, detail: str = "") -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reset_requested = False
        self._wake.clear()
        self._set_state(ConnectionState.RECONNECTING, attempt=1 if immediate else 0, detail=detail)
        self._reconnect_task = asyncio.create_task(self._reconnect_loop(immediate=immediate))

    async def _reconnect_loop(self, *, immediate: bool) -> None:
        attempt = 0
        if not immediate:
            await self._pause(self._retry_delay)
        while self._running:
            if self._reset_requested:
                self._reset_requested = False
                attempt = 0
            attempt += 1
            await self._awake.wait()
            self._set_state(ConnectionState.RECONNECTING, attempt=attempt, detail=self._status.detail)
            error = await self._attempt()
            if error is None:
                self._enter_connected()
                return
            _logger.warning("Reconnect attempt %d/%d failed: %s", attempt, self._max_attempts, error)
            if attempt >= self._max_attempts and not self._reset_requested:
                self._set_state(ConnectionState.FAILED, attempt=attempt, detail=error)
                return
            await self._pause(self._retry_delay)

    async def _pause(self, delay: float) -> None:
        """Sleep for *delay* unless woken by a forced attempt."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        self._wake.clear()

    async def _attempt(self) -> str | None:
        """One connect + subscribe round; returns an error description on failure."""
        try:
            await self._channel.connect()
            for pattern in self._subscriptions:
                subscription = await self._channel.subscribe(pattern)
                self._start_pump(subscription)
        except BleSyncTransportError as exc:
            return str(exc)
        return None

    def _enter_connected(self) -> asyncio.Task[None]:
        """Report ``CONNECTED`` and start the hooks as a side task.

        The hooks run outside the reconnect task, so a transport close that
        arrives while they are still running starts a new reconnect cycle.
        """
        self._deferred_loss = None
        if self._reconnect_task is asyncio.current_task():
            self._reconnect_task = None
        self._set_state(ConnectionState.CONNECTED)
        task = asyncio.create_task(self._run_hooks())
        self._side_tasks.add(task)
        task.add_done_callback(self._side_tasks.discard)
        return task

    async def _run_hooks(self) -> None:
        for hook in list(self._hooks):
            if self._status.state != ConnectionState.CONNECTED:
                break
            try:
                await hook()
            except Exception:
                _logger.warning("Connected hook %r failed", hook, exc_info=True)

    def _start_pump(self, subscription: Subscription) -> None:
        task = asyncio.create_task(self._pump(subscription))
        self._pumps.add(task)
        task.add_done_callback(self._pumps.discard)

    async def _pump(self, subscription: Subscription) -> None:
        async for message in subscription:
            if self._on_message is not None:
                self._on_message(message)

    async def _probe(self) -> bool:
        # The periodic loop and check_now share one probe topic.
        async with self._probe_lock:
            try:
                await self._channel.subscribe(self._probe_topic)
                await self._channel.unsubscribe(self._probe_topic)
            except BleSyncTransportError as exc:
                _logger.debug("Liveness probe failed: %s", exc)
                return False
            return True

    async def _probe_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._probe_interval)
            await self._awake.wait()
            if self._status.state != ConnectionState.CONNECTED:
                continue
            if not await self._probe():
                self._on_transport_closed("liveness probe failed")
