import asyncio

import pytest

from kitchenflow.config import settings
from kitchenflow.core.exceptions import TransportError
from kitchenflow.schemas.changes import ResourceKind, RowFilter, RowUpdated
from kitchenflow.services.change_feed import InMemoryChangeFeed
from kitchenflow.services.change_relay import ChangeFeedRelay


def item_event(row_id="1", **row):
    return RowUpdated(resource=ResourceKind.COMANDA_ITEMS, row_id=row_id, row=row)


class FakeSleep:
    """Records requested delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def sleeper():
    return FakeSleep()


@pytest.fixture
async def relay(feed, sleeper):
    relay = ChangeFeedRelay(feed, client_name="grill-screen", history_size=3, sleep=sleeper)
    await relay.start()
    yield relay
    await relay.stop()


async def test_events_reach_the_handler(relay, feed, eventually):
    received = []
    sub = await relay.subscribe(ResourceKind.COMANDA_ITEMS, received.append)
    assert await sub.wait_connected(timeout=1)

    await feed.publish(item_event(status="ready"))
    await feed.publish(RowUpdated(resource=ResourceKind.ORDERS, row_id="9"))

    await eventually(lambda: len(received) == 1)
    assert received[0].row == {"status": "ready"}
    assert sub.delivered == 1


async def test_async_handlers_are_awaited(relay, feed, eventually):
    received = []

    async def handler(event):
        await asyncio.sleep(0)
        received.append(event.row_id)

    sub = await relay.subscribe(ResourceKind.COMANDA_ITEMS, handler)
    await sub.wait_connected(timeout=1)
    await feed.publish(item_event("7"))

    await eventually(lambda: received == ["7"])


async def test_row_filter_limits_delivery(relay, feed, eventually):
    received = []
    sub = await relay.subscribe(
        ResourceKind.COMANDA_ITEMS, received.append, row_filter=RowFilter(column="comanda_id", value="A")
    )
    await sub.wait_connected(timeout=1)

    await feed.publish(item_event("1", comanda_id="B"))
    await feed.publish(item_event("2", comanda_id="A"))
    await feed.publish(item_event("3"))

    await eventually(lambda: len(received) == 2)
    assert [e.row_id for e in received] == ["2", "3"]


async def test_same_handler_subscribes_once(relay, feed):
    handler = lambda event: None  # noqa: E731

    first = await relay.subscribe(ResourceKind.ORDERS, handler)
    second = await relay.subscribe("orders", handler)
    await first.wait_connected(timeout=1)

    assert first is second
    assert len(relay.subscriptions) == 1
    assert feed.open_stream_count(ResourceKind.ORDERS) == 1


async def test_failing_handler_does_not_stop_the_stream(relay, feed, eventually, caplog):
    received = []

    def handler(event):
        if event.row_id == "bad":
            raise RuntimeError("boom")
        received.append(event.row_id)

    sub = await relay.subscribe(ResourceKind.COMANDA_ITEMS, handler)
    await sub.wait_connected(timeout=1)
    await feed.publish(item_event("bad"))
    await feed.publish(item_event("good"))

    await eventually(lambda: received == ["good"])
    assert "Change handler failed" in caplog.text


async def test_reconnect_backoff_sequence(feed, sleeper):
    feed.fail_next_connects(TransportError.CHANNEL_ERROR, TransportError.CHANNEL_ERROR, TransportError.TIMEOUT)
    relay = ChangeFeedRelay(feed, sleep=sleeper)
    await relay.start()
    try:
        sub = await relay.subscribe(ResourceKind.COMANDA_ITEMS, lambda event: None)
        assert await sub.wait_connected(timeout=1)

        assert sleeper.delays == [0.0, 5.0, 3.0]
        assert sub.reconnects == 3
        assert feed.connect_attempts == 4
    finally:
        await relay.stop()


async def test_dropped_stream_is_reopened(relay, feed, sleeper, eventually):
    received = []
    sub = await relay.subscribe(ResourceKind.COMANDA_ITEMS, received.append)
    await sub.wait_connected(timeout=1)

    assert feed.inject_failure(ResourceKind.COMANDA_ITEMS) == 1
    await eventually(lambda: sub.reconnects == 1 and feed.open_stream_count(ResourceKind.COMANDA_ITEMS) == 1)
    await feed.publish(item_event("after"))

    await eventually(lambda: [e.row_id for e in received] == ["after"])
    assert sleeper.delays == [0.0]


class EndsOnceFeed(InMemoryChangeFeed):
    """Hands out one stream that finishes cleanly before any event arrives."""

    def __init__(self):
        super().__init__()
        self.ended = False

    async def open_stream(self, resource):
        stream = await super().open_stream(resource)
        if not self.ended:
            self.ended = True
            await stream.close()
        return stream


async def test_stream_that_ends_is_reconnected(sleeper, eventually):
    feed = EndsOnceFeed()
    changes, received = [], []
    relay = ChangeFeedRelay(feed, sleep=sleeper, on_connectivity_change=changes.append)
    await relay.start()
    try:
        sub = await relay.subscribe(ResourceKind.COMANDA_ITEMS, received.append)

        await eventually(lambda: sub.reconnects == 1 and feed.open_stream_count(ResourceKind.COMANDA_ITEMS) == 1)
        assert await sub.wait_connected(timeout=1)
        await feed.publish(item_event("after"))

        await eventually(lambda: [e.row_id for e in received] == ["after"])
        assert changes == [True, False, True]
        assert sleeper.delays == [0.0]
        assert feed.connect_attempts == 2
    finally:
        await relay.stop()


async def test_delivery_resets_the_attempt_counter(relay, feed, sleeper, eventually):
    received = []
    sub = await relay.subscribe(ResourceKind.COMANDA_ITEMS, received.append)
    await sub.wait_connected(timeout=1)

    for n in range(2):
        feed.inject_failure(ResourceKind.COMANDA_ITEMS)
        await eventually(lambda: sub.reconnects == n + 1 and feed.open_stream_count() == 1)
        await feed.publish(item_event(str(n)))
        await eventually(lambda: len(received) == n + 1)

    assert sleeper.delays == [0.0, 0.0]


async def test_connectivity_callback(feed, sleeper, eventually):
    changes = []
    relay = ChangeFeedRelay(feed, sleep=sleeper, on_connectivity_change=changes.append)
    sub = await relay.subscribe(ResourceKind.ORDERS, lambda event: None)
    assert not relay.is_connected

    await relay.start()
    await sub.wait_connected(timeout=1)
    assert relay.is_connected

    await relay.stop()
    assert not relay.is_connected
    assert changes == [True, False]


async def test_stop_closes_streams_and_start_resumes(relay, feed):
    sub = await relay.subscribe(ResourceKind.ORDERS, lambda event: None)
    await sub.wait_connected(timeout=1)

    await relay.stop()
    assert feed.open_stream_count() == 0
    assert not relay.is_running

    await relay.start()
    assert await sub.wait_connected(timeout=1)
    assert feed.open_stream_count(ResourceKind.ORDERS) == 1


async def test_unsubscribe(relay, feed, eventually):
    received = []
    sub = await relay.subscribe(ResourceKind.ORDERS, received.append)
    await sub.wait_connected(timeout=1)

    await sub.cancel()

    assert not sub.is_active
    assert relay.subscriptions == []
    assert feed.open_stream_count() == 0


async def test_history_is_bounded(relay, feed, eventually):
    sub = await relay.subscribe(ResourceKind.COMANDA_ITEMS, lambda event: None)
    await sub.wait_connected(timeout=1)

    for n in range(5):
        await feed.publish(item_event(str(n)))

    await eventually(lambda: sub.delivered == 5)
    assert [entry.event.row_id for entry in relay.history] == ["2", "3", "4"]
    assert all(entry.resource == ResourceKind.COMANDA_ITEMS for entry in relay.history)


def test_backoff_for():
    relay = ChangeFeedRelay(InMemoryChangeFeed(), channel_error_backoff=5, timeout_backoff=3)

    assert relay.backoff_for(1, TransportError.TIMEOUT) == 0
    assert relay.backoff_for(1, TransportError.CHANNEL_ERROR) == 0
    assert relay.backoff_for(2, TransportError.TIMEOUT) == 3
    assert relay.backoff_for(4, TransportError.CHANNEL_ERROR) == 5


def test_from_settings():
    relay = ChangeFeedRelay.from_settings(InMemoryChangeFeed(), settings, client_name="cashier")

    assert relay.client_name == "cashier"
    assert relay.backoff_for(2, TransportError.CHANNEL_ERROR) == settings.CHANGE_FEED_CHANNEL_ERROR_BACKOFF
    assert relay.backoff_for(2, TransportError.TIMEOUT) == settings.CHANGE_FEED_TIMEOUT_BACKOFF
