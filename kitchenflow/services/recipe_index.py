"""
Recipe Index: (dish, optional variant) -> required ingredient quantities.

A dish-level key uses every active recipe of the dish, unless only the
unscoped recipes are asked for: a plain dish put on an order is cooked without
any variant extras. A variant key uses the dish's active recipes that are
either unscoped (variant_id NULL) or scoped to that variant. Several rows for
the same ingredient are summed.
"""
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, and_
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from kitchenflow.models.menu import Recipe
from kitchenflow.services.stock_ledger import to_decimal

RecipeKey = Tuple[uuid.UUID, Optional[uuid.UUID]]


@dataclass
class IngredientRequirement:
    inventory_item_id: uuid.UUID
    name: str
    quantity_per_unit: Decimal
    # False when the inventory item is missing or inactive
    item_active: bool = True


class RecipeIndex:
    """Loads bills of materials for many keys in one query."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load_recipes(self, dish_ids: Iterable[uuid.UUID]) -> List[Recipe]:
        ids = list(set(dish_ids))
        if not ids:
            return []
        stmt = (
            select(Recipe)
            .options(selectinload(Recipe.inventory_item))
            .where(and_(Recipe.dish_id.in_(ids), Recipe.active.is_(True)))
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def requirements_for(
        self,
        keys: Iterable[RecipeKey],
        unscoped_only: bool = False,
    ) -> Dict[RecipeKey, List[IngredientRequirement]]:
        """
        Bill of materials per key. A key with no active recipe maps to an empty list.

        With ``unscoped_only`` a dish-level key skips variant-scoped recipes;
        variant keys are unaffected.
        """
        keys = list(dict.fromkeys(keys))
        recipes = await self._load_recipes(dish_id for dish_id, _ in keys)

        by_dish: Dict[uuid.UUID, List[Recipe]] = {}
        for recipe in recipes:
            by_dish.setdefault(recipe.dish_id, []).append(recipe)

        index: Dict[RecipeKey, List[IngredientRequirement]] = {}
        for dish_id, variant_id in keys:
            applicable = [
                r for r in by_dish.get(dish_id, [])
                if r.variant_id is None
                or r.variant_id == variant_id
                or (variant_id is None and not unscoped_only)
            ]
            index[(dish_id, variant_id)] = self._merge(applicable)
        return index

    async def requirements(
        self,
        dish_id: uuid.UUID,
        variant_id: Optional[uuid.UUID] = None,
        unscoped_only: bool = False,
    ) -> List[IngredientRequirement]:
        index = await self.requirements_for([(dish_id, variant_id)], unscoped_only=unscoped_only)
        return index[(dish_id, variant_id)]

    @staticmethod
    def _merge(recipes: List[Recipe]) -> List[IngredientRequirement]:
        merged: Dict[uuid.UUID, IngredientRequirement] = {}
        for recipe in recipes:
            item = recipe.inventory_item
            requirement = merged.get(recipe.inventory_item_id)
            if requirement is None:
                merged[recipe.inventory_item_id] = IngredientRequirement(
                    inventory_item_id=recipe.inventory_item_id,
                    name=item.name if item is not None else str(recipe.inventory_item_id),
                    quantity_per_unit=to_decimal(recipe.quantity_per_unit),
                    item_active=bool(item is not None and item.active),
                )
            else:
                requirement.quantity_per_unit += to_decimal(recipe.quantity_per_unit)
        return list(merged.values())
