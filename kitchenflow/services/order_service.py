from typing import List, Optional, Tuple
from datetime import datetime, timezone
from decimal import Decimal
import uuid
import logging

from sqlalchemy import select, update, func, and_
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from kitchenflow.config import settings
from kitchenflow.core.exceptions import InsufficientStock, InvalidTransition, NoStationConfigured, NotFound
from kitchenflow.models.comanda import Comanda, ComandaItem
from kitchenflow.models.employee import Employee
from kitchenflow.models.kitchen import KitchenScreen
from kitchenflow.models.menu import Dish, DishVariant
from kitchenflow.models.order import Order, OrderItem, ItemStatus
from kitchenflow.schemas.changes import ChangeOperation, ResourceKind, RowUpdated
from kitchenflow.services.availability_service import AvailabilityService, AvailabilityStatus
from kitchenflow.services.change_feed import ChangeCollector, ChangeFeedBackend, deleted
from kitchenflow.services.comanda_service import ComandaService, refresh_aggregate
from kitchenflow.services.stock_ledger import StockLedger, to_decimal

logger = logging.getLogger(__name__)


class OrderService:
    """Service for waiter-side orders and their submission to the kitchen."""

    def __init__(
        self,
        db: AsyncSession,
        change_feed: Optional[ChangeFeedBackend] = None,
        reservation_enabled: Optional[bool] = None,
        allow_without_recipe: Optional[bool] = None,
    ):
        self.db = db
        self.change_feed = change_feed
        self.changes = ChangeCollector(change_feed)
        self.availability = AvailabilityService(db)
        self.ledger = StockLedger(db)
        self.reservation_enabled = (
            settings.STOCK_RESERVATION_ENABLED if reservation_enabled is None else reservation_enabled
        )
        self.allow_without_recipe = (
            settings.ALLOW_DISHES_WITHOUT_RECIPE if allow_without_recipe is None else allow_without_recipe
        )

    # ==================== QUERIES ====================

    async def get_order_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        stmt = (
            select(Order)
            .options(
                selectinload(Order.employee),
                selectinload(Order.items),
                selectinload(Order.comanda),
            )
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_order(self, order_id: uuid.UUID) -> Order:
        order = await self.get_order_by_id(order_id)
        if order is None:
            raise NotFound("Order", order_id)
        return order

    async def list_orders(
        self,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[ItemStatus] = None,
        submitted: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Order], int]:
        """Get paginated orders with filters, newest first."""
        filters = []
        if employee_id:
            filters.append(Order.employee_id == employee_id)
        if status:
            filters.append(Order.status == ItemStatus(status).value)
        if submitted is True:
            filters.append(Order.submitted_at.is_not(None))
        elif submitted is False:
            filters.append(Order.submitted_at.is_(None))

        stmt = select(Order).options(
            selectinload(Order.items),
            selectinload(Order.employee),
            selectinload(Order.comanda),
        )
        count_stmt = select(func.count(Order.id))
        if filters:
            stmt = stmt.where(and_(*filters))
            count_stmt = count_stmt.where(and_(*filters))

        total = (await self.db.execute(count_stmt)).scalar() or 0
        stmt = stmt.order_by(Order.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().unique().all()), total

    async def _get_employee(self, employee_id: uuid.UUID) -> Employee:
        employee = await self.db.get(Employee, employee_id)
        if employee is None or not employee.active:
            raise NotFound("Employee", employee_id)
        return employee

    async def _get_dish(self, dish_id: uuid.UUID) -> Dish:
        dish = await self.db.get(Dish, dish_id)
        if dish is None or not dish.active:
            raise NotFound("Dish", dish_id)
        return dish

    async def _get_variant(self, dish: Dish, variant_id: uuid.UUID) -> DishVariant:
        variant = await self.db.get(DishVariant, variant_id)
        if variant is None or not variant.active or variant.dish_id != dish.id:
            raise NotFound("DishVariant", variant_id)
        return variant

    async def _get_order_item(self, order_item_id: uuid.UUID) -> Tuple[Order, OrderItem]:
        """The item together with its order, loaded from the order side."""
        stmt = (
            select(Order)
            .options(selectinload(Order.items).selectinload(OrderItem.consumptions))
            .where(Order.items.any(OrderItem.id == order_item_id))
            .execution_options(populate_existing=True)
        )
        order = (await self.db.execute(stmt)).scalar_one_or_none()
        item = next((i for i in order.items if i.id == order_item_id), None) if order else None
        if item is None:
            raise NotFound("OrderItem", order_item_id)
        return order, item

    # ==================== ORDER METHODS ====================

    def _recalculate(self, order: Order) -> None:
        order.total = sum((item.line_total for item in order.items), Decimal("0"))
        refresh_aggregate(order)

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError:
            self.changes.discard()
            await self.db.rollback()
            raise
        await self.changes.flush()

    async def create_order(
        self,
        table_ref: str,
        employee_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> Order:
        """Create an empty pending order for a table."""
        table_ref = (table_ref or "").strip()
        if not table_ref:
            raise ValueError("table_ref is required")
        employee = await self._get_employee(employee_id)

        order = Order(
            employee_id=employee.id,
            table_ref=table_ref,
            status=ItemStatus.PENDING.value,
            total=Decimal("0"),
            notes=notes,
        )
        self.db.add(order)
        await self.db.flush()
        self.changes.add_later(ResourceKind.ORDERS, order, ChangeOperation.INSERT)
        await self._commit()

        logger.info("Order %s created for %s by %s", order.id, table_ref, employee.name)
        return await self.get_order(order.id)

    async def add_item(
        self,
        order_id: uuid.UUID,
        dish_id: uuid.UUID,
        quantity: int,
        variant_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> OrderItem:
        """
        Add a dish to an unsubmitted order.

        The requested quantity is checked against current availability. With
        reservation enabled the ingredients are then consumed first-expiry-
        first-out; a concurrent writer that wins the last portion makes this
        call fail with InsufficientStock and nothing is written.

        Raises:
            NotFound: order, dish or variant missing or inactive
            InvalidTransition: the order was already submitted
            InsufficientStock: quantity exceeds what can be prepared
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")

        order = await self.get_order(order_id)
        if order.is_submitted:
            raise InvalidTransition(
                "Order already submitted to the kitchen; items can no longer be added",
                current="submitted",
                target="add_item",
            )
        dish = await self._get_dish(dish_id)
        variant = await self._get_variant(dish, variant_id) if variant_id else None

        availability = await self.availability.check(dish.id, variant_id, unscoped_only=True)
        if availability.status == AvailabilityStatus.NO_RECIPE:
            if not self.allow_without_recipe:
                raise InsufficientStock(requested=quantity, available=0, dish_id=dish.id, variant_id=variant_id)
        elif quantity > availability.producible_quantity:
            raise InsufficientStock(
                requested=quantity,
                available=availability.producible_quantity,
                dish_id=dish.id,
                variant_id=variant_id,
            )

        unit_price = to_decimal(dish.price) + (to_decimal(variant.price_adjustment) if variant else Decimal("0"))
        item = OrderItem(
            dish_id=dish.id,
            variant_id=variant.id if variant else None,
            display_name=variant.name if variant else dish.name,
            unit_price=unit_price,
            quantity=quantity,
            status=ItemStatus.PENDING.value,
            notes=notes,
        )
        order.items.append(item)
        await self.db.flush()

        if self.reservation_enabled and availability.status != AvailabilityStatus.NO_RECIPE:
            await self._reserve(order, item, dish.id, variant_id, quantity)

        self._recalculate(order)
        self.changes.add_later(ResourceKind.ORDER_ITEMS, item, ChangeOperation.INSERT)
        self.changes.add_later(ResourceKind.ORDERS, order)
        await self._commit()

        logger.info("Added %d x %s to order %s", quantity, item.display_name, order.id)
        return item

    async def _reserve(self, order: Order, item: OrderItem, dish_id, variant_id, quantity: int) -> None:
        # Rollback expires every loaded instance
        order_id = order.id
        requirements = await self.availability.recipes.requirements(dish_id, variant_id, unscoped_only=True)
        try:
            for requirement in requirements:
                outcome = await self.ledger.consume(
                    requirement.inventory_item_id,
                    requirement.quantity_per_unit * quantity,
                    order_item_id=item.id,
                )
                for consumption in outcome.consumptions:
                    self.changes.add(self._batch_changed(consumption.batch_id, requirement.inventory_item_id))
        except InsufficientStock:
            self.changes.discard()
            await self.db.rollback()
            fresh = await self.availability.check(dish_id, variant_id, unscoped_only=True)
            logger.warning(
                "Stock for dish %s changed during add_item on order %s (requested %d, now %d)",
                dish_id, order_id, quantity, fresh.producible_quantity,
            )
            raise InsufficientStock(
                requested=quantity,
                available=fresh.producible_quantity,
                dish_id=dish_id,
                variant_id=variant_id,
            )

    @staticmethod
    def _batch_changed(batch_id, inventory_item_id) -> RowUpdated:
        return RowUpdated(
            resource=ResourceKind.BATCHES,
            row_id=str(batch_id),
            row={"id": str(batch_id), "inventory_item_id": str(inventory_item_id)},
        )

    async def remove_item(self, order_item_id: uuid.UUID, allow_after_submission: bool = False) -> Order:
        """
        Remove an item from an order.

        Only allowed before submission unless ``allow_after_submission``.
        Before submission the reserved stock goes back to its batches. After
        submission the ComandaItem forked from this item stays on the ticket
        and is still cooked, so its stock stays consumed; only the ticket
        item's back-reference is cleared.
        """
        order, item = await self._get_order_item(order_item_id)
        submitted = order.is_submitted
        if submitted and not allow_after_submission:
            raise InvalidTransition(
                "Order already submitted to the kitchen; items can no longer be removed",
                current="submitted",
                target="remove_item",
            )

        if not submitted:
            for batch_id in await self.ledger.restore(item.consumptions):
                self.changes.add(
                    RowUpdated(resource=ResourceKind.BATCHES, row_id=str(batch_id), row={"id": str(batch_id)})
                )

        # SQLite does not enforce ON DELETE SET NULL
        await self.db.execute(
            update(ComandaItem)
            .where(ComandaItem.order_item_id == item.id)
            .values(order_item_id=None)
            .execution_options(synchronize_session=False)
        )

        removed_id = item.id
        order.items.remove(item)
        await self.db.flush()
        self._recalculate(order)

        self.changes.add(deleted(ResourceKind.ORDER_ITEMS, removed_id, order_id=order.id))
        self.changes.add_later(ResourceKind.ORDERS, order)
        await self._commit()

        logger.info("Removed item %s from order %s", removed_id, order.id)
        return await self.get_order(order.id)

    # ==================== SUBMISSION ====================

    async def submit_order(self, order_id: uuid.UUID) -> Comanda:
        """
        Fork the kitchen ticket for an order.

        Calling it again returns the existing Comanda; an order never has
        more than one.

        Raises:
            InvalidTransition: the order has no items
            NoStationConfigured: no active kitchen screen exists
        """
        comandas = ComandaService(self.db, self.change_feed)
        order = await self.get_order(order_id)
        if order.comanda is not None:
            return await comandas.get_comanda(order.comanda.id)
        if not order.items:
            raise InvalidTransition("Cannot submit an order with no items", current=order.status, target="submitted")

        active_screens = (
            await self.db.execute(select(func.count(KitchenScreen.id)).where(KitchenScreen.active.is_(True)))
        ).scalar() or 0
        if not active_screens:
            logger.warning("Submission of order %s blocked: no active kitchen screen", order.id)
            raise NoStationConfigured()

        now = datetime.now(timezone.utc)
        comanda = Comanda(
            order_id=order.id,
            table_ref=order.table_ref,
            employee_id=order.employee_id,
            employee_name=order.employee.name,
            total=order.total,
            item_count=order.item_count,
            notes=order.notes,
            status=order.status,
        )
        for source in order.items:
            comanda.items.append(
                ComandaItem(
                    order_item_id=source.id,
                    dish_id=source.dish_id,
                    dish_name=source.display_name,
                    quantity=source.quantity,
                    unit_price=source.unit_price,
                    notes=source.notes,
                    status=source.status,
                )
            )
        refresh_aggregate(comanda)
        order.submitted_at = now
        self.db.add(comanda)

        try:
            await self.db.flush()
        except IntegrityError:
            # Another submission won the unique (order_id) race
            self.changes.discard()
            await self.db.rollback()
            existing = await comandas.get_comanda_for_order(order_id)
            if existing is None:
                raise
            return existing

        self.changes.add_later(ResourceKind.COMANDAS, comanda, ChangeOperation.INSERT)
        for ticket_item in comanda.items:
            self.changes.add_later(ResourceKind.COMANDA_ITEMS, ticket_item, ChangeOperation.INSERT)
        self.changes.add_later(ResourceKind.ORDERS, order)
        await self._commit()

        logger.info("Order %s submitted as comanda %s (%d items)", order.id, comanda.id, len(comanda.items))
        return await comandas.get_comanda(comanda.id)
