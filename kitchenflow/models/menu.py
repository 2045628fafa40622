"""Menu catalog models: categories, dishes, variants and recipe (bill-of-materials) rows."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchenflow.database import Base
from kitchenflow.db_types import UUIDType, MoneyType, QuantityType
from kitchenflow.models.inventory import utcnow

if TYPE_CHECKING:
    from kitchenflow.models.inventory import InventoryItem


class DishCategory(Base):
    """Menu section (starters, grill, drinks)."""

    __tablename__ = "dish_categories"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    dishes: Mapped[List["Dish"]] = relationship("Dish", back_populates="category")


class Dish(Base):
    """A sellable dish."""

    __tablename__ = "dishes"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("dish_categories.id", ondelete="SET NULL"), index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    category: Mapped[Optional["DishCategory"]] = relationship("DishCategory", back_populates="dishes")
    variants: Mapped[List["DishVariant"]] = relationship(
        "DishVariant", back_populates="dish", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Dish {self.name}>"


class DishVariant(Base):
    """A variant of a dish (size, protein choice) with a price adjustment relative to the dish."""

    __tablename__ = "dish_variants"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dish_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("dishes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price_adjustment: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    dish: Mapped["Dish"] = relationship("Dish", back_populates="variants")


class Recipe(Base):
    """
    One bill-of-materials entry: a dish (optionally scoped to a variant) needs
    ``quantity_per_unit`` of an inventory item per portion.
    """

    __tablename__ = "recipes"
    __table_args__ = (
        Index("ix_recipe_dish_variant", "dish_id", "variant_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dish_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("dishes.id", ondelete="CASCADE"), nullable=False
    )
    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("dish_variants.id", ondelete="CASCADE")
    )
    inventory_item_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity_per_unit: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    inventory_item: Mapped["InventoryItem"] = relationship("InventoryItem")
