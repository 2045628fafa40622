"""
Station Router.

``StationRouter`` is a pure filter over the dish-to-screen assignment table.
A dish with no assignment is visible on no screen at all.

``KitchenScreenService`` owns the assignment table: creating screens,
assigning dishes (individually or a whole category at call time) and
duplicating a station's assignments under a new name.
"""
from typing import Dict, Iterable, List, Optional, Set, Tuple
import uuid
import logging

from sqlalchemy import select, delete, and_
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from kitchenflow.core.exceptions import NotFound
from kitchenflow.models.comanda import Comanda, ComandaItem
from kitchenflow.models.kitchen import KitchenScreen, ScreenDishAssignment
from kitchenflow.models.menu import Dish, DishCategory
from kitchenflow.models.order import Order
from kitchenflow.schemas.changes import ChangeOperation, ResourceKind
from kitchenflow.services.change_feed import ChangeCollector, ChangeFeedBackend, deleted
from kitchenflow.services.comanda_service import ACTIVE_STATUSES

logger = logging.getLogger(__name__)


class StationRouter:
    """Immutable snapshot of (screen, dish) assignments."""

    def __init__(self, assignments: Iterable[Tuple[uuid.UUID, uuid.UUID]]):
        self._by_screen: Dict[uuid.UUID, Set[uuid.UUID]] = {}
        self._by_dish: Dict[uuid.UUID, Set[uuid.UUID]] = {}
        for screen_id, dish_id in assignments:
            self._by_screen.setdefault(screen_id, set()).add(dish_id)
            self._by_dish.setdefault(dish_id, set()).add(screen_id)

    @classmethod
    async def load(cls, db: AsyncSession, active_only: bool = True) -> "StationRouter":
        stmt = select(ScreenDishAssignment.screen_id, ScreenDishAssignment.dish_id)
        if active_only:
            stmt = stmt.join(KitchenScreen, KitchenScreen.id == ScreenDishAssignment.screen_id).where(
                KitchenScreen.active.is_(True)
            )
        result = await db.execute(stmt)
        return cls((row.screen_id, row.dish_id) for row in result)

    @property
    def screen_ids(self) -> Set[uuid.UUID]:
        return set(self._by_screen)

    def dishes_for_screen(self, screen_id: uuid.UUID) -> Set[uuid.UUID]:
        return set(self._by_screen.get(screen_id, ()))

    def screens_for_dish(self, dish_id: uuid.UUID) -> Set[uuid.UUID]:
        return set(self._by_dish.get(dish_id, ()))

    def items_visible_on_screen(self, screen_id: uuid.UUID, items: Iterable) -> List:
        """Items (anything with a ``dish_id``) whose dish is assigned to the screen, order kept."""
        dishes = self._by_screen.get(screen_id, set())
        return [item for item in items if item.dish_id in dishes]

    def route(self, items: Iterable) -> Dict[uuid.UUID, List]:
        """Group items by every screen that should show them. Unassigned dishes are dropped."""
        routed: Dict[uuid.UUID, List] = {}
        for item in items:
            for screen_id in self._by_dish.get(item.dish_id, ()):
                routed.setdefault(screen_id, []).append(item)
        return routed


class KitchenScreenService:
    """Service for kitchen screens and their dish assignments."""

    def __init__(self, db: AsyncSession, change_feed: Optional[ChangeFeedBackend] = None):
        self.db = db
        self.changes = ChangeCollector(change_feed)

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError:
            self.changes.discard()
            await self.db.rollback()
            raise
        await self.changes.flush()

    # ==================== SCREENS ====================

    async def get_screen(self, screen_id: uuid.UUID) -> KitchenScreen:
        stmt = (
            select(KitchenScreen)
            .options(selectinload(KitchenScreen.assignments))
            .where(KitchenScreen.id == screen_id)
            .execution_options(populate_existing=True)
        )
        screen = (await self.db.execute(stmt)).scalar_one_or_none()
        if screen is None:
            raise NotFound("KitchenScreen", screen_id)
        return screen

    async def list_screens(self, active_only: bool = False) -> List[KitchenScreen]:
        stmt = select(KitchenScreen).options(selectinload(KitchenScreen.assignments))
        if active_only:
            stmt = stmt.where(KitchenScreen.active.is_(True))
        result = await self.db.execute(stmt.order_by(KitchenScreen.name).execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def create_screen(self, name: str, description: Optional[str] = None, active: bool = True) -> KitchenScreen:
        name = (name or "").strip()
        if not name:
            raise ValueError("Screen name is required")
        screen = KitchenScreen(name=name, description=description, active=active)
        self.db.add(screen)
        await self.db.flush()
        self.changes.add_later(ResourceKind.KITCHEN_SCREENS, screen, ChangeOperation.INSERT)
        await self._commit()
        logger.info("Kitchen screen '%s' created", name)
        return await self.get_screen(screen.id)

    async def update_screen(
        self,
        screen_id: uuid.UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
        active: Optional[bool] = None,
    ) -> KitchenScreen:
        screen = await self.get_screen(screen_id)
        if name is not None:
            if not name.strip():
                raise ValueError("Screen name is required")
            screen.name = name.strip()
        if description is not None:
            screen.description = description
        if active is not None:
            screen.active = active
        self.changes.add_later(ResourceKind.KITCHEN_SCREENS, screen)
        await self._commit()
        return await self.get_screen(screen_id)

    # ==================== ASSIGNMENTS ====================

    async def _existing_dishes(self, screen_id: uuid.UUID) -> Set[uuid.UUID]:
        result = await self.db.execute(
            select(ScreenDishAssignment.dish_id).where(ScreenDishAssignment.screen_id == screen_id)
        )
        return set(result.scalars().all())

    def _assign(self, screen_id: uuid.UUID, dish_id: uuid.UUID) -> ScreenDishAssignment:
        assignment = ScreenDishAssignment(screen_id=screen_id, dish_id=dish_id)
        self.db.add(assignment)
        self.changes.add_later(ResourceKind.SCREEN_DISH_ASSIGNMENTS, assignment, ChangeOperation.INSERT)
        return assignment

    async def dishes_for_screen(self, screen_id: uuid.UUID) -> Set[uuid.UUID]:
        await self.get_screen(screen_id)
        return await self._existing_dishes(screen_id)

    async def assign_dish(self, screen_id: uuid.UUID, dish_id: uuid.UUID) -> bool:
        """Assign a dish to a screen. Returns False if it was already assigned."""
        await self.get_screen(screen_id)
        if await self.db.get(Dish, dish_id) is None:
            raise NotFound("Dish", dish_id)
        if dish_id in await self._existing_dishes(screen_id):
            return False
        self._assign(screen_id, dish_id)
        await self.db.flush()
        await self._commit()
        return True

    async def unassign_dish(self, screen_id: uuid.UUID, dish_id: uuid.UUID) -> bool:
        await self.get_screen(screen_id)
        result = await self.db.execute(
            select(ScreenDishAssignment).where(
                and_(ScreenDishAssignment.screen_id == screen_id, ScreenDishAssignment.dish_id == dish_id)
            )
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            return False
        self.changes.add(
            deleted(ResourceKind.SCREEN_DISH_ASSIGNMENTS, assignment.id, screen_id=screen_id, dish_id=dish_id)
        )
        await self.db.execute(delete(ScreenDishAssignment).where(ScreenDishAssignment.id == assignment.id))
        await self._commit()
        return True

    async def assign_category(self, screen_id: uuid.UUID, category_id: uuid.UUID) -> List[uuid.UUID]:
        """
        Assign every active dish of a category as it stands right now.

        Dishes added to the category later are not picked up. Returns the
        ids of the dishes newly assigned.
        """
        await self.get_screen(screen_id)
        if await self.db.get(DishCategory, category_id) is None:
            raise NotFound("DishCategory", category_id)

        result = await self.db.execute(
            select(Dish.id).where(and_(Dish.category_id == category_id, Dish.active.is_(True)))
        )
        existing = await self._existing_dishes(screen_id)
        added = [dish_id for dish_id in result.scalars().all() if dish_id not in existing]
        for dish_id in added:
            self._assign(screen_id, dish_id)
        await self.db.flush()
        await self._commit()

        logger.info("Assigned %d dish(es) of category %s to screen %s", len(added), category_id, screen_id)
        return added

    async def duplicate_station(self, source_id: uuid.UUID, new_name: str) -> KitchenScreen:
        """Create a new screen carrying the same dish assignments, in one transaction."""
        new_name = (new_name or "").strip()
        if not new_name:
            raise ValueError("Screen name is required")
        source = await self.get_screen(source_id)

        copy = KitchenScreen(name=new_name, description=source.description, active=True)
        self.db.add(copy)
        await self.db.flush()
        for assignment in source.assignments:
            self._assign(copy.id, assignment.dish_id)
        await self.db.flush()
        self.changes.add_later(ResourceKind.KITCHEN_SCREENS, copy, ChangeOperation.INSERT)
        await self._commit()

        logger.info("Duplicated screen '%s' as '%s'", source.name, new_name)
        return await self.get_screen(copy.id)

    # ==================== ROUTING ====================

    async def router(self) -> StationRouter:
        return await StationRouter.load(self.db)

    async def get_screen_comandas(self, screen_id: uuid.UUID) -> List[Tuple[Comanda, List[ComandaItem]]]:
        """Active comandas that have at least one item for this screen, with only those items."""
        await self.get_screen(screen_id)
        router = await StationRouter.load(self.db, active_only=False)
        result = await self.db.execute(
            select(Comanda)
            .options(selectinload(Comanda.items))
            .where(Comanda.status.in_(ACTIVE_STATUSES))
            .order_by(Comanda.created_at.asc())
            .execution_options(populate_existing=True)
        )
        view = []
        for comanda in result.scalars().all():
            visible = router.items_visible_on_screen(screen_id, comanda.items)
            if visible:
                view.append((comanda, visible))
        return view

    async def assign_ticket_to_stations(self, order_id: uuid.UUID) -> Dict[uuid.UUID, List[uuid.UUID]]:
        """
        Active screen -> ids of the ticket items it must prepare.

        Uses the comanda's items once the order is submitted, the order's
        items before that.
        """
        stmt = (
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.comanda).selectinload(Comanda.items))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = (await self.db.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFound("Order", order_id)

        items = order.comanda.items if order.comanda is not None else order.items
        router = await StationRouter.load(self.db)
        return {screen_id: [item.id for item in routed] for screen_id, routed in router.route(items).items()}
