"""
Comanda (kitchen ticket) service.

Kitchen-side mutations of ticket items. Every mutation goes through
``ticket_state_machine`` and rewrites the stored aggregate status of both the
Comanda and its source Order in the same transaction. Change events are
published only after the commit succeeds.
"""
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timezone
import asyncio
import uuid
import logging

from sqlalchemy import select, func, and_
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from kitchenflow.core.exceptions import IndeterminateOutcome, KitchenFlowError, NotFound
from kitchenflow.models.comanda import Comanda, ComandaItem
from kitchenflow.models.order import Order, OrderItem, ItemStatus
from kitchenflow.schemas.changes import ResourceKind
from kitchenflow.services.change_feed import ChangeCollector, ChangeFeedBackend
from kitchenflow.services.ticket_state_machine import (
    TransitionOutcome,
    aggregate_status,
    path_to,
    transition_item,
)

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (ItemStatus.PENDING.value, ItemStatus.READY.value)


@dataclass
class ItemFailure:
    item_id: uuid.UUID
    error: str
    detail: str


@dataclass
class BulkTransitionResult:
    """Per-item outcome of a best-effort bulk advance."""
    comanda_id: uuid.UUID
    advanced: List[uuid.UUID] = field(default_factory=list)
    skipped: List[uuid.UUID] = field(default_factory=list)
    failed: List[ItemFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


def refresh_aggregate(ticket) -> str:
    """Rewrite the stored status of an Order or Comanda from its items."""
    ticket.status = aggregate_status(item.status for item in ticket.items)
    return ticket.status


class ComandaService:
    """Service for kitchen tickets and their items."""

    def __init__(self, db: AsyncSession, change_feed: Optional[ChangeFeedBackend] = None):
        self.db = db
        self.changes = ChangeCollector(change_feed)

    # ==================== QUERIES ====================

    def _comanda_options(self):
        return (
            selectinload(Comanda.items),
            selectinload(Comanda.order).selectinload(Order.items),
        )

    async def get_comanda_by_id(self, comanda_id: uuid.UUID) -> Optional[Comanda]:
        stmt = (
            select(Comanda)
            .options(*self._comanda_options())
            .where(Comanda.id == comanda_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_comanda(self, comanda_id: uuid.UUID) -> Comanda:
        comanda = await self.get_comanda_by_id(comanda_id)
        if comanda is None:
            raise NotFound("Comanda", comanda_id)
        return comanda

    async def get_comanda_for_order(self, order_id: uuid.UUID) -> Optional[Comanda]:
        stmt = (
            select(Comanda)
            .options(*self._comanda_options())
            .where(Comanda.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_comandas(
        self,
        status: Optional[ItemStatus] = None,
        active_only: bool = False,
        employee_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Comanda], int]:
        """Comandas oldest first, so the kitchen works in arrival order."""
        filters = []
        if status:
            filters.append(Comanda.status == ItemStatus(status).value)
        if active_only:
            filters.append(Comanda.status.in_(ACTIVE_STATUSES))
        if employee_id:
            filters.append(Comanda.employee_id == employee_id)

        stmt = select(Comanda).options(selectinload(Comanda.items))
        count_stmt = select(func.count(Comanda.id))
        if filters:
            stmt = stmt.where(and_(*filters))
            count_stmt = count_stmt.where(and_(*filters))

        total = (await self.db.execute(count_stmt)).scalar() or 0
        stmt = stmt.order_by(Comanda.created_at.asc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().unique().all()), total

    async def get_comanda_stats(self) -> Dict[str, int]:
        stmt = select(Comanda.status, func.count(Comanda.id)).group_by(Comanda.status)
        result = await self.db.execute(stmt)
        stats = {status.value: 0 for status in ItemStatus}
        for status, count in result.all():
            stats[status] = count
        stats["total"] = sum(stats[s.value] for s in ItemStatus)
        return stats

    async def _get_item(self, item_id: uuid.UUID) -> Tuple[Comanda, ComandaItem]:
        """The item together with its ticket and source order, loaded from the ticket side."""
        stmt = (
            select(Comanda)
            .options(*self._comanda_options())
            .where(Comanda.items.any(ComandaItem.id == item_id))
            .execution_options(populate_existing=True)
        )
        comanda = (await self.db.execute(stmt)).scalar_one_or_none()
        item = next((i for i in comanda.items if i.id == item_id), None) if comanda else None
        if item is None:
            raise NotFound("ComandaItem", item_id)
        return comanda, item

    # ==================== ITEM TRANSITIONS ====================

    def _source_item(self, comanda: Comanda, item: ComandaItem) -> Optional[OrderItem]:
        if item.order_item_id is None or comanda.order is None:
            return None
        for order_item in comanda.order.items:
            if order_item.id == item.order_item_id:
                return order_item
        return None

    def _apply(self, comanda: Comanda, item: ComandaItem, target: str, now: datetime) -> TransitionOutcome:
        """Transition one item, mirror it onto its OrderItem and rewrite both aggregates."""
        outcome = transition_item(item, target, now=now)
        if not outcome.changed:
            return outcome

        self.changes.add_later(ResourceKind.COMANDA_ITEMS, item)
        source = self._source_item(comanda, item)
        if source is not None:
            for step in path_to(source.status, item.status):
                transition_item(source, step, now=now)
            self.changes.add_later(ResourceKind.ORDER_ITEMS, source)

        self._refresh_ticket(comanda, now)
        return outcome

    def _refresh_ticket(self, comanda: Comanda, now: datetime) -> None:
        if refresh_aggregate(comanda) == ItemStatus.SERVED.value and comanda.served_at is None:
            comanda.served_at = now
        self.changes.add_later(ResourceKind.COMANDAS, comanda)
        if comanda.order is not None:
            refresh_aggregate(comanda.order)
            self.changes.add_later(ResourceKind.ORDERS, comanda.order)

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError:
            self.changes.discard()
            await self.db.rollback()
            raise
        await self.changes.flush()

    async def advance_item(self, item_id: uuid.UUID, target_status) -> TransitionOutcome:
        """
        Move one item forward. Re-applying the current status returns an
        unchanged outcome; backward or skipped moves raise InvalidTransition.
        """
        comanda, item = await self._get_item(item_id)
        outcome = self._apply(comanda, item, target_status, datetime.now(timezone.utc))
        if outcome.changed:
            await self._commit()
            logger.info("Comanda item %s: %s -> %s", item_id, outcome.previous_status, outcome.status)
        return outcome

    async def add_kitchen_note(self, item_id: uuid.UUID, note: Optional[str]) -> ComandaItem:
        _, item = await self._get_item(item_id)
        item.kitchen_notes = note or None
        self.changes.add_later(ResourceKind.COMANDA_ITEMS, item)
        await self._commit()
        return item

    # ==================== TICKET OPERATIONS ====================

    async def mark_all_ready(self, comanda_id: uuid.UUID, timeout: Optional[float] = None) -> BulkTransitionResult:
        """
        Advance every pending item to ready, committing each item on its own.

        Items already ready or served are skipped; a failing item is reported
        and does not undo the ones already advanced. On timeout the outcome is
        indeterminate: some items may have been committed.
        """
        work = self._mark_all_ready(comanda_id)
        if timeout is None:
            return await work
        try:
            return await asyncio.wait_for(work, timeout)
        except asyncio.TimeoutError:
            logger.warning("mark_all_ready for comanda %s exceeded %ss", comanda_id, timeout)
            raise IndeterminateOutcome("mark_all_ready", timeout)

    async def _mark_all_ready(self, comanda_id: uuid.UUID) -> BulkTransitionResult:
        comanda = await self.get_comanda(comanda_id)
        result = BulkTransitionResult(comanda_id=comanda_id)
        # Ids only: a rollback expires every loaded row
        item_ids = [item.id for item in comanda.items]

        for item_id in item_ids:
            item = next((i for i in comanda.items if i.id == item_id), None)
            if item is None or item.status != ItemStatus.PENDING.value:
                result.skipped.append(item_id)
                continue
            try:
                self._apply(comanda, item, ItemStatus.READY.value, datetime.now(timezone.utc))
                await self._commit()
            except (KitchenFlowError, SQLAlchemyError) as e:
                self.changes.discard()
                await self.db.rollback()
                logger.warning("mark_all_ready: item %s failed: %s", item_id, e)
                result.failed.append(
                    ItemFailure(item_id=item_id, error=getattr(e, "kind", type(e).__name__), detail=str(e))
                )
                comanda = await self.get_comanda(comanda_id)
            else:
                result.advanced.append(item_id)

        logger.info(
            "mark_all_ready comanda %s: %d advanced, %d skipped, %d failed",
            comanda_id, len(result.advanced), len(result.skipped), len(result.failed),
        )
        return result

    async def mark_ticket_ready(self, comanda_id: uuid.UUID) -> Comanda:
        """All pending items to ready in one transaction."""
        comanda = await self.get_comanda(comanda_id)
        now = datetime.now(timezone.utc)
        for item in comanda.items:
            if item.status == ItemStatus.PENDING.value:
                self._apply(comanda, item, ItemStatus.READY.value, now)
        self._refresh_ticket(comanda, now)
        await self._commit()
        return comanda

    async def mark_ticket_served(self, comanda_id: uuid.UUID) -> Comanda:
        """Step every item through ready to served in one transaction."""
        comanda = await self.get_comanda(comanda_id)
        now = datetime.now(timezone.utc)
        for item in comanda.items:
            for step in path_to(item.status, ItemStatus.SERVED.value):
                self._apply(comanda, item, step, now)
        self._refresh_ticket(comanda, now)
        if comanda.served_at is None:
            comanda.served_at = now
        await self._commit()
        return comanda
