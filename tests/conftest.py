import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOW_STOCK_THRESHOLD", "1")
os.environ.setdefault("STOCK_RESERVATION_ENABLED", "true")
os.environ.setdefault("ALLOW_DISHES_WITHOUT_RECIPE", "false")

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from kitchenflow.database import Base, enable_sqlite_transactions
from kitchenflow import models  # noqa: F401
from kitchenflow.models.employee import Employee
from kitchenflow.models.inventory import Batch, InventoryItem
from kitchenflow.models.kitchen import KitchenScreen, ScreenDishAssignment
from kitchenflow.models.menu import Dish, DishCategory, DishVariant, Recipe
from kitchenflow.services.change_feed import InMemoryChangeFeed


@pytest.fixture
async def engine(tmp_path):
    # One file per test; WAL lets background readers run next to a writer
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'kitchen.db'}")
    enable_sqlite_transactions(engine)

    @event.listens_for(engine.sync_engine, "connect")
    def _wal(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
def eventually():
    """Poll ``predicate`` until it holds, letting background tasks run."""
    async def wait(predicate, timeout: float = 2.0, interval: float = 0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)
    return wait


class Seeder:
    """Adds catalog, stock and station rows; call ``commit`` when done."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _add(self, obj):
        self.db.add(obj)
        await self.db.flush()
        return obj

    async def commit(self):
        await self.db.commit()

    async def employee(self, name="Ana", active=True):
        return await self._add(Employee(name=name, active=active))

    async def ingredient(self, name, unit="g", active=True):
        return await self._add(InventoryItem(name=name, unit=unit, active=active))

    async def batch(self, item, quantity, expires_in=timedelta(days=3), active=True):
        return await self._add(
            Batch(
                inventory_item_id=item.id,
                quantity=Decimal(str(quantity)),
                expiry_date=datetime.now(timezone.utc) + expires_in,
                active=active,
            )
        )

    async def category(self, name="Grill"):
        return await self._add(DishCategory(name=name))

    async def dish(self, name, price="10.00", category=None, active=True):
        return await self._add(
            Dish(
                name=name,
                price=Decimal(price),
                category_id=category.id if category is not None else None,
                active=active,
            )
        )

    async def variant(self, dish, name, adjustment="0.00"):
        return await self._add(DishVariant(dish_id=dish.id, name=name, price_adjustment=Decimal(adjustment)))

    async def recipe(self, dish, item, quantity, variant=None, active=True):
        return await self._add(
            Recipe(
                dish_id=dish.id,
                variant_id=variant.id if variant is not None else None,
                inventory_item_id=item.id,
                quantity_per_unit=Decimal(str(quantity)),
                active=active,
            )
        )

    async def screen(self, name="Grill", dishes=(), active=True):
        screen = await self._add(KitchenScreen(name=name, active=active))
        for dish in dishes:
            await self._add(ScreenDishAssignment(screen_id=screen.id, dish_id=dish.id))
        return screen


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
async def burger_kitchen(seed):
    """
    Beef 500g in stock, a Burger needing 250g, a Grill screen preparing
    burgers and a waiter. Two burgers can be made.
    """
    waiter = await seed.employee("Ana")
    beef = await seed.ingredient("Beef")
    await seed.batch(beef, 500)
    burger = await seed.dish("Burger", price="12.50")
    await seed.recipe(burger, beef, 250)
    grill = await seed.screen("Grill", dishes=[burger])
    await seed.commit()
    return {"waiter": waiter, "beef": beef, "burger": burger, "grill": grill}
