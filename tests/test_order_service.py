import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from kitchenflow.core.exceptions import InsufficientStock, InvalidTransition, NoStationConfigured, NotFound
from kitchenflow.models.comanda import Comanda, ComandaItem
from kitchenflow.models.inventory import StockConsumption
from kitchenflow.schemas.changes import ChangeOperation, ResourceKind
from kitchenflow.services.availability_service import AvailabilityResult, AvailabilityStatus, AvailabilityService
from kitchenflow.services.order_service import OrderService
from kitchenflow.services.stock_ledger import StockLedger


async def open_order(db, waiter, feed=None, **kwargs):
    service = OrderService(db, feed, **kwargs)
    order = await service.create_order("Mesa 4", waiter.id)
    return service, order


async def usable_beef(db, beef_id):
    stock = await StockLedger(db).usable_stock([beef_id])
    return stock.get(beef_id, Decimal("0"))


# ==================== CREATE ====================

async def test_create_order(db, burger_kitchen, feed):
    service, order = await open_order(db, burger_kitchen["waiter"], feed)

    assert order.table_ref == "Mesa 4"
    assert order.status == "pending"
    assert order.total == Decimal("0")
    assert order.employee.name == "Ana"
    assert not order.is_submitted
    assert [e.resource for e in feed.published] == [ResourceKind.ORDERS]
    assert feed.published[0].operation == ChangeOperation.INSERT.value


async def test_create_order_requires_table(db, burger_kitchen):
    with pytest.raises(ValueError):
        await OrderService(db).create_order("   ", burger_kitchen["waiter"].id)


async def test_create_order_for_inactive_employee(db, seed):
    former = await seed.employee("Luis", active=False)
    await seed.commit()
    with pytest.raises(NotFound):
        await OrderService(db).create_order("Mesa 1", former.id)


# ==================== ADD ITEM ====================

async def test_add_item_within_stock(db, burger_kitchen, feed):
    service, order = await open_order(db, burger_kitchen["waiter"], feed)
    feed.published.clear()

    item = await service.add_item(order.id, burger_kitchen["burger"].id, 2, notes="no onion")

    assert item.display_name == "Burger"
    assert item.unit_price == Decimal("12.50")
    assert item.line_total == Decimal("25.00")
    assert item.status == "pending"
    refreshed = await service.get_order(order.id)
    assert refreshed.total == Decimal("25.00")
    assert refreshed.item_count == 2
    resources = {e.resource for e in feed.published}
    assert {ResourceKind.ORDER_ITEMS, ResourceKind.ORDERS, ResourceKind.BATCHES} <= resources


async def test_add_item_over_stock_is_rejected(db, burger_kitchen):
    service, order = await open_order(db, burger_kitchen["waiter"])

    with pytest.raises(InsufficientStock) as exc:
        await service.add_item(order.id, burger_kitchen["burger"].id, 3)

    assert exc.value.requested == 3
    assert exc.value.available == 2
    assert exc.value.to_dict()["error"] == "insufficient_stock"
    refreshed = await service.get_order(order.id)
    assert refreshed.items == []
    assert await usable_beef(db, burger_kitchen["beef"].id) == Decimal("500")


async def test_add_then_availability_reflects_reservation(db, burger_kitchen):
    burger_id = burger_kitchen["burger"].id
    availability = AvailabilityService(db)
    service, order = await open_order(db, burger_kitchen["waiter"])

    before = await availability.check(burger_id)
    await service.add_item(order.id, burger_id, 1)
    after = await availability.check(burger_id)

    assert before.producible_quantity == 2
    assert after.producible_quantity == 1
    assert after.status == AvailabilityStatus.LOW_STOCK

    await service.add_item(order.id, burger_id, 1)
    assert (await availability.check(burger_id)).status == AvailabilityStatus.NO_STOCK

    with pytest.raises(InsufficientStock) as exc:
        await service.add_item(order.id, burger_id, 1)
    assert exc.value.available == 0


async def test_without_reservation_the_check_is_advisory(db, burger_kitchen):
    burger_id = burger_kitchen["burger"].id
    service, order = await open_order(db, burger_kitchen["waiter"], reservation_enabled=False)

    await service.add_item(order.id, burger_id, 2)

    assert (await AvailabilityService(db).check(burger_id)).producible_quantity == 2
    assert await usable_beef(db, burger_kitchen["beef"].id) == Decimal("500")


async def test_reservation_consumes_soonest_expiry_first(db, seed):
    waiter = await seed.employee()
    beef = await seed.ingredient("Beef")
    later = await seed.batch(beef, 500, expires_in=timedelta(days=5))
    sooner = await seed.batch(beef, 200, expires_in=timedelta(days=1))
    burger = await seed.dish("Burger")
    await seed.recipe(burger, beef, 250)
    await seed.commit()
    service, order = await open_order(db, waiter)

    item = await service.add_item(order.id, burger.id, 1)

    batches = {b.id: b.quantity for b in await StockLedger(db).get_batches([later.id, sooner.id])}
    assert batches[sooner.id] == Decimal("0")
    assert batches[later.id] == Decimal("450")
    result = await db.execute(select(StockConsumption).where(StockConsumption.order_item_id == item.id))
    taken = sorted(c.quantity for c in result.scalars())
    assert taken == [Decimal("50"), Decimal("200")]


async def test_lost_race_reports_current_availability(db, burger_kitchen):
    burger_id = burger_kitchen["burger"].id
    beef_id = burger_kitchen["beef"].id
    service, order = await open_order(db, burger_kitchen["waiter"])
    order_id = order.id
    real_check = service.availability.check
    calls = []

    async def stale_check(dish_id, variant_id=None, **kwargs):
        # First read sees stock that another waiter has already taken
        calls.append(dish_id)
        if len(calls) == 1:
            return AvailabilityResult(dish_id, variant_id, AvailabilityStatus.AVAILABLE, 5)
        return await real_check(dish_id, variant_id, **kwargs)

    service.availability.check = stale_check

    with pytest.raises(InsufficientStock) as exc:
        await service.add_item(order_id, burger_id, 3)

    assert exc.value.requested == 3
    assert exc.value.available == 2
    assert len(calls) == 2
    assert (await OrderService(db).get_order(order_id)).items == []
    assert await usable_beef(db, beef_id) == Decimal("500")


async def test_dish_without_recipe_is_rejected_by_default(db, seed):
    waiter = await seed.employee()
    water = await seed.dish("Water", price="2.00")
    await seed.commit()
    service, order = await open_order(db, waiter)

    with pytest.raises(InsufficientStock) as exc:
        await service.add_item(order.id, water.id, 1)
    assert exc.value.available == 0


async def test_dish_without_recipe_can_be_allowed(db, seed):
    waiter = await seed.employee()
    water = await seed.dish("Water", price="2.00")
    await seed.commit()
    service, order = await open_order(db, waiter, allow_without_recipe=True)

    item = await service.add_item(order.id, water.id, 3)

    assert item.quantity == 3


async def test_variant_sets_name_and_price(db, burger_kitchen, seed):
    burger = burger_kitchen["burger"]
    double = await seed.variant(burger, "Double Burger", adjustment="4.00")
    await seed.commit()
    service, order = await open_order(db, burger_kitchen["waiter"])

    item = await service.add_item(order.id, burger.id, 1, variant_id=double.id)

    assert item.display_name == "Double Burger"
    assert item.unit_price == Decimal("16.50")
    assert item.variant_id == double.id


async def test_plain_dish_does_not_reserve_variant_ingredients(db, burger_kitchen, seed):
    burger = burger_kitchen["burger"]
    cheese = await seed.ingredient("Cheese")
    await seed.batch(cheese, 40)
    cheese_burger = await seed.variant(burger, "Cheese Burger", adjustment="1.50")
    await seed.recipe(burger, cheese, 50, variant=cheese_burger)
    await seed.commit()
    service, order = await open_order(db, burger_kitchen["waiter"])

    await service.add_item(order.id, burger.id, 1)

    stock = await StockLedger(db).usable_stock([cheese.id, burger_kitchen["beef"].id])
    assert stock[cheese.id] == Decimal("40")
    assert stock[burger_kitchen["beef"].id] == Decimal("250")
    with pytest.raises(InsufficientStock) as exc:
        await service.add_item(order.id, burger.id, 1, variant_id=cheese_burger.id)
    assert exc.value.available == 0


async def test_variant_of_another_dish_is_not_found(db, burger_kitchen, seed):
    fries = await seed.dish("Fries")
    large = await seed.variant(fries, "Large Fries")
    await seed.commit()
    service, order = await open_order(db, burger_kitchen["waiter"])

    with pytest.raises(NotFound):
        await service.add_item(order.id, burger_kitchen["burger"].id, 1, variant_id=large.id)


async def test_quantity_must_be_positive(db, burger_kitchen):
    service, order = await open_order(db, burger_kitchen["waiter"])
    with pytest.raises(ValueError):
        await service.add_item(order.id, burger_kitchen["burger"].id, 0)


async def test_unknown_dish(db, burger_kitchen):
    service, order = await open_order(db, burger_kitchen["waiter"])
    with pytest.raises(NotFound):
        await service.add_item(order.id, uuid.uuid4(), 1)


# ==================== REMOVE ITEM ====================

async def test_remove_item_restores_stock(db, burger_kitchen, feed):
    beef_id = burger_kitchen["beef"].id
    service, order = await open_order(db, burger_kitchen["waiter"], feed)
    item = await service.add_item(order.id, burger_kitchen["burger"].id, 2)
    assert await usable_beef(db, beef_id) == Decimal("0")
    feed.published.clear()

    order = await service.remove_item(item.id)

    assert order.items == []
    assert order.total == Decimal("0")
    assert await usable_beef(db, beef_id) == Decimal("500")
    deletions = [e for e in feed.published if e.operation == ChangeOperation.DELETE.value]
    assert [e.row_id for e in deletions] == [str(item.id)]


async def test_remove_after_submission_is_rejected(db, burger_kitchen):
    service, order = await open_order(db, burger_kitchen["waiter"])
    item = await service.add_item(order.id, burger_kitchen["burger"].id, 1)
    await service.submit_order(order.id)

    with pytest.raises(InvalidTransition):
        await service.remove_item(item.id)


async def test_forced_removal_keeps_the_kitchen_copy(db, burger_kitchen):
    service, order = await open_order(db, burger_kitchen["waiter"])
    item = await service.add_item(order.id, burger_kitchen["burger"].id, 1)
    comanda = await service.submit_order(order.id)
    ticket_item_id = comanda.items[0].id

    await service.remove_item(item.id, allow_after_submission=True)

    ticket_item = (
        await db.execute(
            select(ComandaItem).where(ComandaItem.id == ticket_item_id).execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert ticket_item.order_item_id is None
    assert ticket_item.dish_name == "Burger"


async def test_forced_removal_leaves_the_stock_consumed(db, session_factory, burger_kitchen):
    burger_id = burger_kitchen["burger"].id
    service, order = await open_order(db, burger_kitchen["waiter"])
    item = await service.add_item(order.id, burger_id, 2)
    comanda = await service.submit_order(order.id)

    async with session_factory() as session:
        await OrderService(session).remove_item(item.id, allow_after_submission=True)

    async with session_factory() as session:
        assert (await AvailabilityService(session).check(burger_id)).producible_quantity == 0
        assert await usable_beef(session, burger_kitchen["beef"].id) == Decimal("0")
        kept = (await session.execute(select(ComandaItem).where(ComandaItem.comanda_id == comanda.id))).scalars().all()
        assert [(i.dish_name, i.quantity) for i in kept] == [("Burger", 2)]


# ==================== ONE SESSION PER REQUEST ====================

async def test_remove_item_in_a_new_session(db, session_factory, burger_kitchen):
    beef_id = burger_kitchen["beef"].id
    service, order = await open_order(db, burger_kitchen["waiter"])
    item = await service.add_item(order.id, burger_kitchen["burger"].id, 2)

    async with session_factory() as session:
        refreshed = await OrderService(session).remove_item(item.id)

    assert refreshed.items == []
    assert refreshed.total == Decimal("0")
    async with session_factory() as session:
        assert await usable_beef(session, beef_id) == Decimal("500")
        leftovers = await session.execute(select(StockConsumption).where(StockConsumption.order_item_id == item.id))
        assert leftovers.scalars().all() == []


async def test_remove_unknown_item(db, burger_kitchen):
    with pytest.raises(NotFound):
        await OrderService(db).remove_item(uuid.uuid4())


async def test_add_and_submit_in_new_sessions(session_factory, burger_kitchen):
    waiter_id = burger_kitchen["waiter"].id
    async with session_factory() as session:
        order = await OrderService(session).create_order("Mesa 9", waiter_id)
    async with session_factory() as session:
        await OrderService(session).add_item(order.id, burger_kitchen["burger"].id, 1)

    async with session_factory() as session:
        comanda = await OrderService(session).submit_order(order.id)

    assert comanda.order_id == order.id
    assert [i.dish_name for i in comanda.items] == ["Burger"]
    async with session_factory() as session:
        again = await OrderService(session).submit_order(order.id)
    assert again.id == comanda.id


# ==================== SUBMIT ====================

async def test_submit_creates_comanda_snapshot(db, burger_kitchen, feed):
    service, order = await open_order(db, burger_kitchen["waiter"], feed)
    item = await service.add_item(order.id, burger_kitchen["burger"].id, 2, notes="well done")
    feed.published.clear()

    comanda = await service.submit_order(order.id)

    assert comanda.order_id == order.id
    assert comanda.table_ref == "Mesa 4"
    assert comanda.employee_name == "Ana"
    assert comanda.total == Decimal("25.00")
    assert comanda.item_count == 2
    assert comanda.status == "pending"
    [ticket_item] = comanda.items
    assert ticket_item.order_item_id == item.id
    assert ticket_item.dish_name == "Burger"
    assert ticket_item.notes == "well done"
    assert (await service.get_order(order.id)).is_submitted
    inserted = {e.resource for e in feed.published if e.operation == ChangeOperation.INSERT.value}
    assert inserted == {ResourceKind.COMANDAS, ResourceKind.COMANDA_ITEMS}


async def test_submit_is_idempotent(db, burger_kitchen):
    service, order = await open_order(db, burger_kitchen["waiter"])
    await service.add_item(order.id, burger_kitchen["burger"].id, 1)

    first = await service.submit_order(order.id)
    second = await service.submit_order(order.id)

    assert first.id == second.id
    count = (await db.execute(select(func.count(Comanda.id)).where(Comanda.order_id == order.id))).scalar()
    assert count == 1


async def test_submit_empty_order_is_rejected(db, burger_kitchen):
    service, order = await open_order(db, burger_kitchen["waiter"])
    with pytest.raises(InvalidTransition):
        await service.submit_order(order.id)


async def test_submit_without_active_station(db, seed):
    waiter = await seed.employee()
    beef = await seed.ingredient("Beef")
    await seed.batch(beef, 500)
    burger = await seed.dish("Burger")
    await seed.recipe(burger, beef, 250)
    await seed.screen("Closed grill", dishes=[burger], active=False)
    await seed.commit()
    service, order = await open_order(db, waiter)
    await service.add_item(order.id, burger.id, 1)

    with pytest.raises(NoStationConfigured) as exc:
        await service.submit_order(order.id)

    assert exc.value.to_dict()["error"] == "no_station_configured"
    assert not (await service.get_order(order.id)).is_submitted


async def test_items_cannot_be_added_after_submission(db, burger_kitchen):
    service, order = await open_order(db, burger_kitchen["waiter"])
    await service.add_item(order.id, burger_kitchen["burger"].id, 1)
    await service.submit_order(order.id)

    with pytest.raises(InvalidTransition):
        await service.add_item(order.id, burger_kitchen["burger"].id, 1)


# ==================== LIST ====================

async def test_list_orders_filters(db, burger_kitchen):
    waiter = burger_kitchen["waiter"]
    service = OrderService(db)
    open_one = await service.create_order("Mesa 1", waiter.id)
    sent = await service.create_order("Mesa 2", waiter.id)
    await service.add_item(sent.id, burger_kitchen["burger"].id, 1)
    await service.submit_order(sent.id)

    orders, total = await service.list_orders(submitted=False)
    assert total == 1 and orders[0].id == open_one.id

    orders, total = await service.list_orders(employee_id=waiter.id)
    assert total == 2
    assert {o.id for o in orders} == {sent.id, open_one.id}
