"""
Change-Feed Relay: the per-client subscription manager.

Every client (waiter device, kitchen screen, cashier) owns one relay. The
relay keeps one asyncio task per subscription, so a slow handler or a broken
stream on one resource never blocks another.

Delivery is at-least-once and unordered. Payloads are advisory: handlers are
expected to re-fetch authoritative state rather than trust ``event.row``.

Reconnect policy:
    1st failure        -> retry immediately
    channel error      -> wait CHANGE_FEED_CHANNEL_ERROR_BACKOFF (5s)
    timeout            -> wait CHANGE_FEED_TIMEOUT_BACKOFF (3s)
The attempt counter resets once the stream delivers an event again.
"""
import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple, Union

from kitchenflow.core.exceptions import TransportError
from kitchenflow.schemas.changes import ResourceKind, RowFilter
from kitchenflow.services.change_feed import ChangeFeedBackend

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[Any], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class HistoryEntry:
    received_at: datetime
    resource: ResourceKind
    event: Any


@dataclass(eq=False)
class Subscription:
    """Handle returned by ``ChangeFeedRelay.subscribe``."""
    resource: ResourceKind
    handler: ChangeHandler
    row_filter: Optional[RowFilter] = None
    delivered: int = 0
    reconnects: int = 0
    _relay: Optional["ChangeFeedRelay"] = field(default=None, repr=False)
    _task: Optional[asyncio.Task] = field(default=None, repr=False)
    _connected: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _active: bool = True

    @property
    def key(self) -> Tuple[ResourceKind, Optional[RowFilter], ChangeHandler]:
        return (self.resource, self.row_filter, self.handler)

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def cancel(self) -> None:
        if self._relay is not None:
            await self._relay.unsubscribe(self)


class ChangeFeedRelay:
    """
    Subscription manager with explicit lifecycle.

        relay = ChangeFeedRelay(feed, client_name="grill-screen")
        await relay.start()
        await relay.subscribe(ResourceKind.COMANDA_ITEMS, board.on_change)
        ...
        await relay.stop()
    """

    def __init__(
        self,
        backend: ChangeFeedBackend,
        client_name: str = "client",
        history_size: int = 100,
        channel_error_backoff: float = 5.0,
        timeout_backoff: float = 3.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_connectivity_change: Optional[Callable[[bool], Any]] = None,
    ):
        self._backend = backend
        self.client_name = client_name
        self._channel_error_backoff = channel_error_backoff
        self._timeout_backoff = timeout_backoff
        self._sleep = sleep
        self._on_connectivity_change = on_connectivity_change
        self._subscriptions: Dict[tuple, Subscription] = {}
        self._history: Deque[HistoryEntry] = deque(maxlen=history_size)
        self._running = False
        self._last_connected: Optional[bool] = None

    @classmethod
    def from_settings(cls, backend: ChangeFeedBackend, settings, client_name: str = "client", **kwargs):
        return cls(
            backend,
            client_name=client_name,
            history_size=settings.CHANGE_FEED_HISTORY_SIZE,
            channel_error_backoff=settings.CHANGE_FEED_CHANNEL_ERROR_BACKOFF,
            timeout_backoff=settings.CHANGE_FEED_TIMEOUT_BACKOFF,
            **kwargs,
        )

    # ==================== LIFECYCLE ====================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        """True while running and every active subscription holds an open stream."""
        if not self._running:
            return False
        return all(sub.is_connected for sub in self._subscriptions.values())

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for sub in self._subscriptions.values():
            self._launch(sub)
        logger.info("Relay '%s' started with %d subscription(s)", self.client_name, len(self._subscriptions))

    async def stop(self) -> None:
        """Cancel every subscription task and close their streams."""
        if not self._running:
            return
        self._running = False
        tasks = [sub._task for sub in self._subscriptions.values() if sub._task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for sub in self._subscriptions.values():
            sub._task = None
            sub._connected.clear()
        self._notify_connectivity()
        logger.info("Relay '%s' stopped", self.client_name)

    async def __aenter__(self) -> "ChangeFeedRelay":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ==================== SUBSCRIPTIONS ====================

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions.values())

    @property
    def history(self) -> List[HistoryEntry]:
        return list(self._history)

    async def subscribe(
        self,
        resource: ResourceKind,
        on_change: ChangeHandler,
        row_filter: Optional[RowFilter] = None,
    ) -> Subscription:
        """
        Subscribe ``on_change`` to a resource. Subscribing the same handler to
        the same (resource, filter) again returns the existing subscription.
        """
        resource = ResourceKind(resource)
        key = (resource, row_filter, on_change)
        existing = self._subscriptions.get(key)
        if existing is not None:
            return existing

        sub = Subscription(resource=resource, handler=on_change, row_filter=row_filter, _relay=self)
        self._subscriptions[key] = sub
        if self._running:
            self._launch(sub)
        return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        self._subscriptions.pop(sub.key, None)
        sub._active = False
        if sub._task is not None:
            sub._task.cancel()
            await asyncio.gather(sub._task, return_exceptions=True)
            sub._task = None
        sub._connected.clear()

    def _launch(self, sub: Subscription) -> None:
        if sub._task is None or sub._task.done():
            sub._task = asyncio.create_task(
                self._run(sub), name=f"relay:{self.client_name}:{sub.resource.value}"
            )

    # ==================== STREAM LOOP ====================

    def backoff_for(self, attempt: int, reason: str) -> float:
        """Delay before reconnect ``attempt`` (1-based) after a failure of kind ``reason``."""
        if attempt <= 1:
            return 0.0
        if reason == TransportError.TIMEOUT:
            return self._timeout_backoff
        return self._channel_error_backoff

    async def _run(self, sub: Subscription) -> None:
        attempt = 0
        while self._running and sub.is_active:
            try:
                stream = await self._backend.open_stream(sub.resource)
            except TransportError as e:
                attempt += 1
                await self._handle_failure(sub, e, attempt)
                continue

            sub._connected.set()
            self._notify_connectivity()
            try:
                async for event in stream:
                    attempt = 0
                    await self._deliver(sub, event)
                if not (self._running and sub.is_active):
                    break
                # A stream that ends on its own is a dropped channel
                raise TransportError(f"Stream for {sub.resource.value} ended", reason=TransportError.CHANNEL_ERROR)
            except TransportError as e:
                attempt += 1
                await self._handle_failure(sub, e, attempt)
            finally:
                await stream.close()

    async def _handle_failure(self, sub: Subscription, error: TransportError, attempt: int) -> None:
        sub._connected.clear()
        sub.reconnects += 1
        self._notify_connectivity()
        delay = self.backoff_for(attempt, error.reason)
        logger.warning(
            "Relay '%s' lost %s (%s, attempt %d); reconnecting in %.1fs",
            self.client_name, sub.resource.value, error.reason, attempt, delay,
        )
        await self._sleep(delay)

    async def _deliver(self, sub: Subscription, event) -> None:
        if sub.row_filter is not None and not sub.row_filter.matches(event):
            return
        self._history.append(
            HistoryEntry(received_at=datetime.now(timezone.utc), resource=sub.resource, event=event)
        )
        sub.delivered += 1
        try:
            result = sub.handler(event)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Change handler failed for %s %s on relay '%s'",
                event.operation, sub.resource.value, self.client_name,
            )

    def _notify_connectivity(self) -> None:
        connected = self.is_connected
        if connected == self._last_connected:
            return
        self._last_connected = connected
        if self._on_connectivity_change is not None:
            try:
                self._on_connectivity_change(connected)
            except Exception:
                logger.exception("Connectivity callback failed on relay '%s'", self.client_name)
