"""
Availability Engine.

For each requested (dish, variant) key:

    producible = min over ingredients of floor(usable_stock / quantity_per_unit)

zero when the dish has no active recipe or any ingredient is short. Usable
stock is fetched once per request for every ingredient involved, so dishes
that share ingredients never trigger extra queries.

Status tiers come from ``availability_status`` and nothing else:

    no_recipe  no active recipe for the key
    no_stock   producible == 0
    low_stock  0 < producible <= LOW_STOCK_THRESHOLD
    available  otherwise
"""
import asyncio
import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kitchenflow.config import settings
from kitchenflow.core.exceptions import IndeterminateOutcome
from kitchenflow.models.menu import DishVariant
from kitchenflow.services.recipe_index import RecipeIndex, RecipeKey
from kitchenflow.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    LOW_STOCK = "low_stock"
    NO_STOCK = "no_stock"
    NO_RECIPE = "no_recipe"


def availability_status(quantity: int, threshold: Optional[int] = None) -> AvailabilityStatus:
    """The single low-stock policy: ``0 < quantity <= threshold`` is low stock."""
    if threshold is None:
        threshold = settings.LOW_STOCK_THRESHOLD
    if quantity <= 0:
        return AvailabilityStatus.NO_STOCK
    if quantity <= threshold:
        return AvailabilityStatus.LOW_STOCK
    return AvailabilityStatus.AVAILABLE


def availability_key(dish_id, variant_id=None) -> str:
    """Result map key: ``"<dish_id>"`` or ``"<dish_id>:<variant_id>"``."""
    if variant_id is None:
        return str(dish_id)
    return f"{dish_id}:{variant_id}"


@dataclass
class AvailabilityResult:
    dish_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    status: AvailabilityStatus
    producible_quantity: int
    missing_ingredients: List[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return availability_key(self.dish_id, self.variant_id)


class AvailabilityService:
    """Computes producible quantities. Read-only."""

    def __init__(self, db: AsyncSession, low_stock_threshold: Optional[int] = None):
        self.db = db
        self.ledger = StockLedger(db)
        self.recipes = RecipeIndex(db)
        self.low_stock_threshold = (
            low_stock_threshold if low_stock_threshold is not None else settings.LOW_STOCK_THRESHOLD
        )

    async def compute_availability(
        self,
        dish_ids: Iterable[uuid.UUID] = (),
        variant_ids: Optional[Iterable[uuid.UUID]] = None,
        timeout: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, AvailabilityResult]:
        """
        Availability per dish and per variant.

        Raises:
            IndeterminateOutcome: ``timeout`` elapsed before the computation finished
        """
        work = self._compute(list(dish_ids), list(variant_ids or []), now)
        if timeout is None:
            return await work
        try:
            return await asyncio.wait_for(work, timeout)
        except asyncio.TimeoutError:
            logger.warning("Availability computation exceeded %ss", timeout)
            raise IndeterminateOutcome("compute_availability", timeout)

    async def check(
        self,
        dish_id: uuid.UUID,
        variant_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
        unscoped_only: bool = False,
    ) -> AvailabilityResult:
        """
        Availability of a single (dish, variant) key.

        ``unscoped_only`` leaves variant-scoped recipes out of a dish-level
        key, which is what a plain dish on an order actually uses.
        """
        results = await self._compute_keys([(dish_id, variant_id)], now, unscoped_only)
        return results[availability_key(dish_id, variant_id)]

    async def _compute(
        self,
        dish_ids: List[uuid.UUID],
        variant_ids: List[uuid.UUID],
        now: Optional[datetime],
    ) -> Dict[str, AvailabilityResult]:
        keys: List[RecipeKey] = [(dish_id, None) for dish_id in dish_ids]
        if variant_ids:
            result = await self.db.execute(
                select(DishVariant.id, DishVariant.dish_id).where(DishVariant.id.in_(set(variant_ids)))
            )
            found = {row.id: row.dish_id for row in result}
            for variant_id in variant_ids:
                if variant_id not in found:
                    logger.debug("Skipping unknown variant %s", variant_id)
                    continue
                keys.append((found[variant_id], variant_id))
        return await self._compute_keys(keys, now)

    async def _compute_keys(
        self,
        keys: List[RecipeKey],
        now: Optional[datetime],
        unscoped_only: bool = False,
    ) -> Dict[str, AvailabilityResult]:
        now = now or datetime.now(timezone.utc)
        index = await self.recipes.requirements_for(keys, unscoped_only=unscoped_only)

        ingredient_ids = {
            req.inventory_item_id for requirements in index.values() for req in requirements
        }
        stock = await self.ledger.usable_stock(ingredient_ids, now=now)

        results: Dict[str, AvailabilityResult] = {}
        for (dish_id, variant_id), requirements in index.items():
            results[availability_key(dish_id, variant_id)] = self._evaluate(
                dish_id, variant_id, requirements, stock
            )
        return results

    def _evaluate(self, dish_id, variant_id, requirements, stock: Dict[uuid.UUID, Decimal]) -> AvailabilityResult:
        if not requirements:
            return AvailabilityResult(
                dish_id=dish_id,
                variant_id=variant_id,
                status=AvailabilityStatus.NO_RECIPE,
                producible_quantity=0,
            )

        producible: Optional[int] = None
        missing: List[str] = []
        for req in requirements:
            usable = stock.get(req.inventory_item_id, Decimal("0")) if req.item_active else Decimal("0")
            if req.quantity_per_unit <= 0:
                # A zero-quantity row never limits production
                continue
            if usable < req.quantity_per_unit:
                portions = 0
                missing.append(req.name)
            else:
                portions = int(usable // req.quantity_per_unit)
            producible = portions if producible is None else min(producible, portions)

        quantity = producible if producible is not None else 0
        return AvailabilityResult(
            dish_id=dish_id,
            variant_id=variant_id,
            status=availability_status(quantity, self.low_stock_threshold),
            producible_quantity=quantity,
            missing_ingredients=sorted(missing),
        )
