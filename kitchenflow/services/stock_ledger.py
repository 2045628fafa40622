"""
Stock Ledger: usable-stock view over inventory items and their expiring batches.

A batch counts toward usable stock iff it is active, has quantity > 0 and its
expiry is in the future; the parent inventory item must be active too.

Also owns the reservation step used by ``OrderService.add_item``:
batches are consumed first-expiry-first-out with a compare-and-decrement

    UPDATE batches SET quantity = quantity - :take
    WHERE id = :id AND quantity >= :take

so two concurrent adds can never both take the last portion. Every
decrement is recorded as a StockConsumption row so it can be restored.
"""
import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from kitchenflow.core.exceptions import InsufficientStock
from kitchenflow.models.inventory import Batch, InventoryItem, StockConsumption

logger = logging.getLogger(__name__)


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class ConsumptionResult:
    """Outcome of consuming one ingredient for an order item."""
    inventory_item_id: uuid.UUID
    requested: Decimal
    consumptions: List[StockConsumption] = field(default_factory=list)

    @property
    def consumed(self) -> Decimal:
        return sum((to_decimal(c.quantity) for c in self.consumptions), Decimal("0"))


class StockLedger:
    """Read and reserve ingredient stock."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== READS ====================

    def _usable_filters(self, now: datetime):
        return [
            Batch.active.is_(True),
            Batch.quantity > 0,
            Batch.expiry_date > now,
            InventoryItem.active.is_(True),
        ]

    async def usable_stock(
        self,
        inventory_item_ids: Iterable[uuid.UUID],
        now: Optional[datetime] = None,
    ) -> Dict[uuid.UUID, Decimal]:
        """
        Usable quantity per inventory item, in a single grouped query.

        Items that are missing, inactive or have no usable batch are absent
        from the result (callers treat absence as zero).
        """
        ids = list(set(inventory_item_ids))
        if not ids:
            return {}
        now = now or datetime.now(timezone.utc)

        stmt = (
            select(Batch.inventory_item_id, func.sum(Batch.quantity).label("usable"))
            .join(InventoryItem, InventoryItem.id == Batch.inventory_item_id)
            .where(and_(Batch.inventory_item_id.in_(ids), *self._usable_filters(now)))
            .group_by(Batch.inventory_item_id)
        )
        result = await self.db.execute(stmt)
        return {row.inventory_item_id: to_decimal(row.usable) for row in result}

    async def usable_batches(
        self,
        inventory_item_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> List[Batch]:
        """Usable batches of one item, soonest expiry first."""
        now = now or datetime.now(timezone.utc)
        stmt = (
            select(Batch)
            .join(InventoryItem, InventoryItem.id == Batch.inventory_item_id)
            .where(and_(Batch.inventory_item_id == inventory_item_id, *self._usable_filters(now)))
            .order_by(Batch.expiry_date.asc(), Batch.created_at.asc())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ==================== RESERVATION ====================

    async def consume(
        self,
        inventory_item_id: uuid.UUID,
        quantity: Decimal,
        order_item_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> ConsumptionResult:
        """
        Take ``quantity`` of an ingredient, first-expiry-first-out.

        Raises InsufficientStock if usable stock runs out or a concurrent writer
        wins a batch between our read and our decrement. The caller owns the
        transaction and must roll back on error.
        """
        needed = to_decimal(quantity)
        outcome = ConsumptionResult(inventory_item_id=inventory_item_id, requested=needed)
        if needed <= 0:
            return outcome

        remaining = needed
        for batch in await self.usable_batches(inventory_item_id, now=now):
            if remaining <= 0:
                break
            take = min(remaining, to_decimal(batch.quantity))
            if take <= 0:
                continue

            stmt = (
                update(Batch)
                .where(and_(Batch.id == batch.id, Batch.quantity >= take))
                .values(quantity=Batch.quantity - take)
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            if result.rowcount != 1:
                logger.warning("Lost stock race on batch %s (wanted %s)", batch.id, take)
                raise InsufficientStock(requested=int(needed), available=int(needed - remaining))

            consumption = StockConsumption(order_item_id=order_item_id, batch_id=batch.id, quantity=take)
            self.db.add(consumption)
            outcome.consumptions.append(consumption)
            remaining -= take

        if remaining > 0:
            raise InsufficientStock(requested=int(needed), available=int(needed - remaining))

        return outcome

    async def restore(self, consumptions: Iterable[StockConsumption]) -> List[uuid.UUID]:
        """Give consumed quantities back to their batches. Returns the touched batch ids."""
        touched: List[uuid.UUID] = []
        for consumption in consumptions:
            await self.db.execute(
                update(Batch)
                .where(Batch.id == consumption.batch_id)
                .values(quantity=Batch.quantity + to_decimal(consumption.quantity))
                .execution_options(synchronize_session=False)
            )
            touched.append(consumption.batch_id)
        return touched

    async def get_batches(self, batch_ids: Iterable[uuid.UUID]) -> List[Batch]:
        ids = list(set(batch_ids))
        if not ids:
            return []
        result = await self.db.execute(
            select(Batch).where(Batch.id.in_(ids)).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ==================== MAINTENANCE ====================

    async def deactivate_expired(self, now: Optional[datetime] = None) -> List[Batch]:
        """Flag active batches whose expiry has passed as inactive. Caller commits."""
        now = now or datetime.now(timezone.utc)
        result = await self.db.execute(
            select(Batch).where(and_(Batch.active.is_(True), Batch.expiry_date <= now))
        )
        expired = list(result.scalars().all())
        for batch in expired:
            batch.active = False
        return expired
