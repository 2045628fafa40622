import uuid
from types import SimpleNamespace

import pytest

from kitchenflow.core.exceptions import NotFound
from kitchenflow.schemas.changes import ChangeOperation, ResourceKind
from kitchenflow.services.comanda_service import ComandaService
from kitchenflow.services.order_service import OrderService
from kitchenflow.services.station_router import KitchenScreenService, StationRouter

GRILL, BAR = uuid.uuid4(), uuid.uuid4()
BURGER, STEAK, MOJITO, SOUP = (uuid.uuid4() for _ in range(4))


def line(dish_id):
    return SimpleNamespace(id=uuid.uuid4(), dish_id=dish_id)


@pytest.fixture
def router():
    return StationRouter([(GRILL, BURGER), (GRILL, STEAK), (BAR, MOJITO), (BAR, BURGER)])


def test_unassigned_dish_is_on_no_screen(router):
    assert router.screens_for_dish(SOUP) == set()
    assert router.items_visible_on_screen(GRILL, [line(SOUP)]) == []
    assert router.route([line(SOUP)]) == {}


def test_items_visible_keeps_order(router):
    items = [line(MOJITO), line(STEAK), line(SOUP), line(BURGER)]

    visible = router.items_visible_on_screen(GRILL, items)

    assert visible == [items[1], items[3]]
    assert router.items_visible_on_screen(uuid.uuid4(), items) == []


def test_route_sends_shared_dishes_to_every_screen(router):
    burger, mojito = line(BURGER), line(MOJITO)

    routed = router.route([burger, mojito])

    assert routed == {GRILL: [burger], BAR: [burger, mojito]}
    assert router.screen_ids == {GRILL, BAR}
    assert router.dishes_for_screen(BAR) == {MOJITO, BURGER}


# ==================== SCREEN SERVICE ====================

@pytest.fixture
async def menu(seed):
    mains = await seed.category("Mains")
    drinks = await seed.category("Drinks")
    burger = await seed.dish("Burger", category=mains)
    steak = await seed.dish("Steak", category=mains)
    await seed.dish("Old special", category=mains, active=False)
    mojito = await seed.dish("Mojito", category=drinks)
    await seed.commit()
    return SimpleNamespace(mains=mains, drinks=drinks, burger=burger, steak=steak, mojito=mojito)


async def test_create_and_update_screen(db, feed):
    service = KitchenScreenService(db, feed)

    screen = await service.create_screen("  Grill ", description="Hot line")
    assert screen.name == "Grill"
    assert screen.active

    screen = await service.update_screen(screen.id, active=False)
    assert not screen.active
    assert [(e.resource, e.operation) for e in feed.published] == [
        (ResourceKind.KITCHEN_SCREENS, ChangeOperation.INSERT.value),
        (ResourceKind.KITCHEN_SCREENS, ChangeOperation.UPDATE.value),
    ]


async def test_blank_screen_name_is_rejected(db):
    with pytest.raises(ValueError):
        await KitchenScreenService(db).create_screen("   ")


async def test_assign_dish_is_idempotent(db, menu):
    service = KitchenScreenService(db)
    screen = await service.create_screen("Grill")

    assert await service.assign_dish(screen.id, menu.burger.id) is True
    assert await service.assign_dish(screen.id, menu.burger.id) is False
    assert await service.dishes_for_screen(screen.id) == {menu.burger.id}


async def test_assign_unknown_dish_or_screen(db, menu):
    service = KitchenScreenService(db)
    screen = await service.create_screen("Grill")

    with pytest.raises(NotFound):
        await service.assign_dish(screen.id, uuid.uuid4())
    with pytest.raises(NotFound):
        await service.assign_dish(uuid.uuid4(), menu.burger.id)


async def test_unassign_dish(db, menu, feed):
    service = KitchenScreenService(db, feed)
    screen = await service.create_screen("Grill")
    await service.assign_dish(screen.id, menu.burger.id)
    feed.published.clear()

    assert await service.unassign_dish(screen.id, menu.burger.id) is True
    assert await service.unassign_dish(screen.id, menu.burger.id) is False
    assert await service.dishes_for_screen(screen.id) == set()
    [event] = feed.published
    assert event.operation == ChangeOperation.DELETE.value
    assert event.row["dish_id"] == str(menu.burger.id)


async def test_assign_category_takes_active_dishes_at_call_time(db, menu, seed):
    service = KitchenScreenService(db)
    screen = await service.create_screen("Grill")
    await service.assign_dish(screen.id, menu.burger.id)

    added = await service.assign_category(screen.id, menu.mains.id)

    assert added == [menu.steak.id]
    assert await service.dishes_for_screen(screen.id) == {menu.burger.id, menu.steak.id}

    await seed.dish("Ribs", category=menu.mains)
    await seed.commit()
    assert await service.dishes_for_screen(screen.id) == {menu.burger.id, menu.steak.id}


async def test_duplicate_station(db, menu):
    service = KitchenScreenService(db)
    bar = await service.create_screen("Bar", description="Drinks")
    await service.assign_category(bar.id, menu.drinks.id)
    await service.assign_dish(bar.id, menu.burger.id)

    copy = await service.duplicate_station(bar.id, "Terrace bar")

    assert copy.id != bar.id
    assert copy.name == "Terrace bar"
    assert copy.description == "Drinks"
    assert await service.dishes_for_screen(copy.id) == {menu.mojito.id, menu.burger.id}
    assert await service.dishes_for_screen(bar.id) == {menu.mojito.id, menu.burger.id}


async def test_router_ignores_inactive_screens(db, menu):
    service = KitchenScreenService(db)
    grill = await service.create_screen("Grill")
    closed = await service.create_screen("Closed", active=False)
    await service.assign_dish(grill.id, menu.burger.id)
    await service.assign_dish(closed.id, menu.steak.id)

    router = await service.router()

    assert router.screen_ids == {grill.id}
    assert router.screens_for_dish(menu.steak.id) == set()


# ==================== TICKETS ON SCREENS ====================

@pytest.fixture
async def split_order(db, seed):
    """An order with a burger and a mojito; Grill prepares burgers, Bar mojitos."""
    waiter = await seed.employee()
    burger = await seed.dish("Burger")
    mojito = await seed.dish("Mojito")
    grill = await seed.screen("Grill", dishes=[burger])
    bar = await seed.screen("Bar", dishes=[mojito])
    await seed.commit()

    orders = OrderService(db, allow_without_recipe=True)
    order = await orders.create_order("Mesa 9", waiter.id)
    await orders.add_item(order.id, burger.id, 1)
    await orders.add_item(order.id, mojito.id, 2)
    return SimpleNamespace(orders=orders, order=order, burger=burger, mojito=mojito, grill=grill, bar=bar)


async def test_assign_ticket_before_and_after_submission(db, split_order):
    service = KitchenScreenService(db)

    before = await service.assign_ticket_to_stations(split_order.order.id)
    order = await split_order.orders.get_order(split_order.order.id)
    by_dish = {item.dish_id: item.id for item in order.items}
    assert before == {
        split_order.grill.id: [by_dish[split_order.burger.id]],
        split_order.bar.id: [by_dish[split_order.mojito.id]],
    }

    comanda = await split_order.orders.submit_order(split_order.order.id)
    after = await service.assign_ticket_to_stations(split_order.order.id)
    ticket_by_dish = {item.dish_id: item.id for item in comanda.items}
    assert after[split_order.grill.id] == [ticket_by_dish[split_order.burger.id]]
    assert after[split_order.bar.id] == [ticket_by_dish[split_order.mojito.id]]


async def test_assign_ticket_unknown_order(db):
    with pytest.raises(NotFound):
        await KitchenScreenService(db).assign_ticket_to_stations(uuid.uuid4())


async def test_screen_comandas_show_only_their_items(db, split_order):
    comanda = await split_order.orders.submit_order(split_order.order.id)
    service = KitchenScreenService(db)

    [(ticket, items)] = await service.get_screen_comandas(split_order.grill.id)

    assert ticket.id == comanda.id
    assert [i.dish_name for i in items] == ["Burger"]

    await ComandaService(db).mark_ticket_served(comanda.id)
    assert await service.get_screen_comandas(split_order.grill.id) == []
