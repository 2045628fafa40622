"""
Change Feed: server-side publish/subscribe of row change notifications.

Services publish a tagged event after every committed mutation; clients open a
stream per resource and re-fetch authoritative state when something arrives.

Supports:
1. Redis pub/sub (multi-process deployments, REDIS_URL set)
2. In-memory fan-out (single process, development/testing)

Usage:
    feed = create_change_feed(settings)

    await feed.publish(RowUpdated(resource=ResourceKind.COMANDA_ITEMS, row_id=str(item.id), row={...}))

    stream = await feed.open_stream(ResourceKind.COMANDA_ITEMS)
    async for event in stream:
        ...
    await stream.close()

Channels are namespaced as ``{namespace}:changes:{resource}``.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set

from kitchenflow.core.exceptions import TransportError
from kitchenflow.schemas.changes import (
    ChangeOperation,
    ResourceKind,
    RowDeleted,
    RowInserted,
    RowUpdated,
    dump_change_event,
    parse_change_event,
)

logger = logging.getLogger(__name__)


# =============================================================================
# STREAMS & BACKENDS
# =============================================================================

class ChangeStream(ABC):
    """An open subscription to one resource. Iteration raises TransportError on failure."""

    def __aiter__(self):
        return self

    async def __anext__(self):
        return await self.next_event()

    @abstractmethod
    async def next_event(self):
        """Wait for the next event."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying transport."""
        pass


class ChangeFeedBackend(ABC):
    """Abstract change feed backend interface."""

    @abstractmethod
    async def publish(self, event) -> bool:
        """Publish an event to every open stream of its resource."""
        pass

    @abstractmethod
    async def open_stream(self, resource: ResourceKind) -> ChangeStream:
        """Open a stream for a resource. Raises TransportError if the transport is unreachable."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    async def publish_many(self, events: Iterable) -> int:
        published = 0
        for event in events:
            if await self.publish(event):
                published += 1
        return published


_FAILURE = object()


class _QueueStream(ChangeStream):
    def __init__(self, feed: "InMemoryChangeFeed", resource: ResourceKind, maxsize: int):
        self._feed = feed
        self.resource = resource
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def offer(self, item) -> None:
        if self.queue.full():
            # Oldest event is dropped; consumers re-fetch so only the signal matters
            self.queue.get_nowait()
            logger.warning("Change stream for %s overflowed; dropping oldest event", self.resource.value)
        self.queue.put_nowait(item)

    async def next_event(self):
        if self._closed:
            raise StopAsyncIteration
        item = await self.queue.get()
        if isinstance(item, tuple) and item and item[0] is _FAILURE:
            await self.close()
            raise TransportError(f"Stream for {self.resource.value} dropped", reason=item[1])
        return item

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._feed._detach(self)


class InMemoryChangeFeed(ChangeFeedBackend):
    """
    In-process fan-out for development and tests.

    Every open stream gets its own bounded queue. ``inject_failure`` and
    ``fail_next_connects`` simulate transport faults for the relay's reconnect
    logic.
    """

    def __init__(self, queue_size: int = 1000):
        self._queue_size = queue_size
        self._streams: Dict[ResourceKind, Set[_QueueStream]] = {}
        self._failing_connects: List[str] = []
        self.published: List[Any] = []
        self.connect_attempts = 0

    async def publish(self, event) -> bool:
        self.published.append(event)
        for stream in list(self._streams.get(event.resource, ())):
            stream.offer(event)
        return True

    async def open_stream(self, resource: ResourceKind) -> ChangeStream:
        self.connect_attempts += 1
        if self._failing_connects:
            reason = self._failing_connects.pop(0)
            raise TransportError(f"Cannot subscribe to {resource.value}", reason=reason)
        stream = _QueueStream(self, resource, self._queue_size)
        self._streams.setdefault(resource, set()).add(stream)
        return stream

    async def close(self) -> None:
        for streams in list(self._streams.values()):
            for stream in list(streams):
                await stream.close()
        self._streams.clear()

    def _detach(self, stream: _QueueStream) -> None:
        self._streams.get(stream.resource, set()).discard(stream)

    def open_stream_count(self, resource: Optional[ResourceKind] = None) -> int:
        if resource is not None:
            return len(self._streams.get(resource, ()))
        return sum(len(s) for s in self._streams.values())

    def inject_failure(self, resource: ResourceKind, reason: str = TransportError.CHANNEL_ERROR) -> int:
        """Break every open stream of a resource. Returns how many were broken."""
        streams = list(self._streams.get(resource, ()))
        for stream in streams:
            stream.offer((_FAILURE, reason))
        return len(streams)

    def fail_next_connects(self, *reasons: str) -> None:
        """Make the next ``len(reasons)`` ``open_stream`` calls raise TransportError."""
        self._failing_connects.extend(reasons)


class _RedisStream(ChangeStream):
    def __init__(self, pubsub, channel: str, poll_timeout: float):
        self._pubsub = pubsub
        self._channel = channel
        self._poll_timeout = poll_timeout
        self._closed = False

    async def next_event(self):
        from redis.exceptions import ConnectionError as RedisConnectionError
        from redis.exceptions import TimeoutError as RedisTimeoutError

        while not self._closed:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self._poll_timeout
                )
            except RedisTimeoutError as e:
                raise TransportError(f"Timeout reading {self._channel}: {e}", reason=TransportError.TIMEOUT)
            except (RedisConnectionError, OSError) as e:
                raise TransportError(f"Channel {self._channel} failed: {e}", reason=TransportError.CHANNEL_ERROR)
            if message is None or message.get("type") != "message":
                continue
            try:
                return parse_change_event(message["data"])
            except ValueError:
                logger.warning("Discarding malformed change event on %s", self._channel)
        raise StopAsyncIteration

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        except Exception as e:
            logger.debug("Error closing pubsub for %s: %s", self._channel, e)


class RedisChangeFeed(ChangeFeedBackend):
    """Redis pub/sub backend for multi-process deployments."""

    def __init__(self, redis_url: str, namespace: str = "kitchenflow", poll_timeout: float = 1.0):
        self._redis_url = redis_url
        self._namespace = namespace
        self._poll_timeout = poll_timeout
        self._client = None

    def channel_for(self, resource: ResourceKind) -> str:
        return f"{self._namespace}:changes:{resource.value}"

    async def _get_client(self):
        if self._client is None:
            try:
                import redis.asyncio as redis
                self._client = redis.from_url(self._redis_url, decode_responses=True)
            except ImportError:
                raise RuntimeError("redis package not installed. Run: pip install redis")
        return self._client

    async def publish(self, event) -> bool:
        try:
            client = await self._get_client()
            await client.publish(self.channel_for(event.resource), dump_change_event(event))
            return True
        except Exception as e:
            # The mutation is already committed; subscribers converge on their next re-fetch
            logger.warning("Failed to publish %s change for %s: %s", event.operation, event.resource.value, e)
            return False

    async def open_stream(self, resource: ResourceKind) -> ChangeStream:
        from redis.exceptions import ConnectionError as RedisConnectionError
        from redis.exceptions import TimeoutError as RedisTimeoutError

        channel = self.channel_for(resource)
        client = await self._get_client()
        pubsub = client.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisTimeoutError as e:
            raise TransportError(f"Timeout subscribing to {channel}: {e}", reason=TransportError.TIMEOUT)
        except (RedisConnectionError, OSError) as e:
            raise TransportError(f"Cannot subscribe to {channel}: {e}", reason=TransportError.CHANNEL_ERROR)
        return _RedisStream(pubsub, channel, self._poll_timeout)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_change_feed(settings) -> ChangeFeedBackend:
    """Redis when REDIS_URL is configured, in-process fan-out otherwise."""
    if settings.REDIS_URL:
        logger.info("Change feed: Redis pub/sub (%s)", settings.CHANGE_FEED_NAMESPACE)
        return RedisChangeFeed(settings.REDIS_URL, namespace=settings.CHANGE_FEED_NAMESPACE)
    logger.info("Change feed: in-memory (single process)")
    return InMemoryChangeFeed(queue_size=settings.CHANGE_FEED_QUEUE_SIZE)


# =============================================================================
# EVENT BUILDERS
# =============================================================================

def _json_safe(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def row_snapshot(obj) -> Dict[str, Any]:
    """Column values of an ORM instance as a JSON-safe dict (relationships excluded)."""
    return {
        column.key: _json_safe(getattr(obj, column.key, None))
        for column in obj.__table__.columns
    }


def inserted(resource: ResourceKind, obj) -> RowInserted:
    return RowInserted(resource=resource, row_id=str(obj.id), row=row_snapshot(obj))


def updated(resource: ResourceKind, obj) -> RowUpdated:
    return RowUpdated(resource=resource, row_id=str(obj.id), row=row_snapshot(obj))


def deleted(resource: ResourceKind, row_id, **row: Any) -> RowDeleted:
    return RowDeleted(
        resource=resource,
        row_id=str(row_id),
        row={k: _json_safe(v) for k, v in row.items()},
    )


_BUILDERS = {
    ChangeOperation.INSERT: inserted,
    ChangeOperation.UPDATE: updated,
}


class ChangeCollector:
    """
    Collects events during a unit of work and publishes them after commit.

    ``add_later`` defers the row snapshot until ``flush`` so generated ids and
    timestamps are included; repeated updates of the same row collapse into
    one event. Services own one collector; a rollback discards the pending events.
    """

    def __init__(self, feed: Optional[ChangeFeedBackend]):
        self._feed = feed
        self._pending: List[Any] = []

    def add(self, event) -> None:
        self._pending.append(event)

    def add_later(self, resource: ResourceKind, obj, operation: ChangeOperation = ChangeOperation.UPDATE) -> None:
        self._pending.append((resource, obj, ChangeOperation(operation)))

    def discard(self) -> None:
        self._pending.clear()

    @property
    def pending(self) -> List[Any]:
        return list(self._pending)

    def build(self) -> List[Any]:
        events: List[Any] = []
        seen: Set[tuple] = set()
        for entry in self._pending:
            if not isinstance(entry, tuple):
                events.append(entry)
                continue
            resource, obj, operation = entry
            key = (resource, id(obj), operation)
            if key in seen:
                continue
            seen.add(key)
            events.append(_BUILDERS[operation](resource, obj))
        return events

    async def flush(self) -> int:
        events = self.build()
        self._pending = []
        if self._feed is None or not events:
            return 0
        return await self._feed.publish_many(events)
