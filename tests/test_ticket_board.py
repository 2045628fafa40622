import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from kitchenflow.models.order import ItemStatus
from kitchenflow.schemas.comanda import ComandaItemResponse, ComandaResponse
from kitchenflow.services.change_relay import ChangeFeedRelay
from kitchenflow.services.comanda_service import ComandaService
from kitchenflow.services.order_service import OrderService
from kitchenflow.services.ticket_board import TicketBoard, TicketSource

PENDING, READY, SERVED = (s.value for s in ItemStatus)


class FakeKitchen:
    """Server-side ticket state; ``fetch`` snapshots it when called and can be held back."""

    def __init__(self, *item_statuses):
        self.comanda_id = uuid.uuid4()
        self.statuses = {uuid.uuid4(): status for status in item_statuses}
        self.gate = asyncio.Event()
        self.gate.set()
        self.fetches = 0

    @property
    def item_ids(self):
        return list(self.statuses)

    def snapshot(self):
        now = datetime.now(timezone.utc)
        items = [
            ComandaItemResponse(
                id=item_id,
                comanda_id=self.comanda_id,
                dish_id=uuid.uuid4(),
                dish_name="Burger",
                quantity=1,
                unit_price=Decimal("12.50"),
                status=status,
                created_at=now,
            )
            for item_id, status in self.statuses.items()
        ]
        return ComandaResponse(
            id=self.comanda_id,
            order_id=uuid.uuid4(),
            table_ref="Mesa 3",
            employee_id=uuid.uuid4(),
            employee_name="Ana",
            total=Decimal("12.50") * len(items),
            item_count=len(items),
            status=PENDING,
            created_at=now,
            items=items,
        )

    async def fetch(self):
        self.fetches += 1
        snapshot = self.snapshot()
        await self.gate.wait()
        return [snapshot]


async def test_refresh_replaces_the_cache():
    kitchen = FakeKitchen(PENDING)
    board = TicketBoard(kitchen.fetch)

    await board.refresh()
    [item_id] = kitchen.item_ids
    assert board.item_status(item_id) == PENDING

    kitchen.statuses[item_id] = READY
    await board.on_change(object())
    assert board.item_status(item_id) == READY
    assert board.get(kitchen.comanda_id).table_ref == "Mesa 3"
    assert board.refresh_count == 2


async def test_optimistic_status_shows_during_the_write():
    kitchen = FakeKitchen(PENDING, PENDING)
    board = TicketBoard(kitchen.fetch)
    await board.refresh()
    target, other = kitchen.item_ids
    seen = {}

    async def write():
        seen["item"] = board.item_status(target)
        seen["ticket"] = board.get(kitchen.comanda_id).status
        kitchen.statuses[target] = READY
        return "ok"

    assert await board.mutate(target, ItemStatus.READY, write) == "ok"

    assert seen == {"item": READY, "ticket": READY}
    assert board.item_status(target) == READY
    assert board.item_status(other) == PENDING


async def test_failed_write_drops_the_optimistic_status():
    kitchen = FakeKitchen(PENDING)
    board = TicketBoard(kitchen.fetch)
    await board.refresh()
    [item_id] = kitchen.item_ids

    async def write():
        raise RuntimeError("409")

    with pytest.raises(RuntimeError):
        await board.mutate(item_id, READY, write)

    assert board.item_status(item_id) == PENDING


async def test_optimistic_overlay_never_moves_an_item_backward():
    kitchen = FakeKitchen(SERVED)
    board = TicketBoard(kitchen.fetch)
    await board.refresh()
    [item_id] = kitchen.item_ids

    async def write():
        return board.item_status(item_id)

    assert await board.mutate(item_id, READY, write) == SERVED


async def test_refresh_racing_a_mutation_fetches_again():
    kitchen = FakeKitchen(PENDING)
    board = TicketBoard(kitchen.fetch)
    [item_id] = kitchen.item_ids

    kitchen.gate.clear()
    slow_refresh = asyncio.create_task(board.refresh())
    await asyncio.sleep(0)
    assert kitchen.fetches == 1

    async def write():
        kitchen.statuses[item_id] = READY

    mutation = asyncio.create_task(board.mutate(item_id, READY, write))
    await asyncio.sleep(0)
    kitchen.gate.set()
    await asyncio.gather(slow_refresh, mutation)

    # The stale first fetch was discarded instead of stored
    assert kitchen.fetches == 3
    assert board.refresh_count == 2
    assert board.item_status(item_id) == READY


async def test_board_follows_the_kitchen(db, session_factory, burger_kitchen, feed, eventually):
    orders = OrderService(db)
    order = await orders.create_order("Mesa 5", burger_kitchen["waiter"].id)
    await orders.add_item(order.id, burger_kitchen["burger"].id, 1)
    comanda = await orders.submit_order(order.id)
    item_id = comanda.items[0].id

    source = TicketSource(session_factory)
    board = TicketBoard(lambda: source.active_comandas(burger_kitchen["grill"].id))
    relay = ChangeFeedRelay(feed, client_name="grill-screen")
    await relay.start()
    try:
        await board.attach(relay)
        for sub in relay.subscriptions:
            assert await sub.wait_connected(timeout=1)
        await board.refresh()
        assert board.item_status(item_id) == PENDING

        async def write():
            async with session_factory() as session:
                return await ComandaService(session, feed).advance_item(item_id, READY)

        outcome = await board.mutate(item_id, READY, write)
        assert outcome.changed
        await eventually(lambda: board.item_status(item_id) == READY)

        async with session_factory() as session:
            await ComandaService(session, feed).mark_ticket_served(comanda.id)
        await eventually(lambda: board.tickets == [])
    finally:
        await board.detach()
        await relay.stop()
