"""Inventory models: ingredients, their expiring batches and the consumption ledger."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchenflow.database import Base
from kitchenflow.db_types import UUIDType, QuantityType

if TYPE_CHECKING:
    from kitchenflow.models.order import OrderItem


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InventoryItem(Base):
    """An ingredient tracked in stock (beef, buns, oil...)."""

    __tablename__ = "inventory_items"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="g", comment="g, kg, ml, l, unit")
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    batches: Mapped[List["Batch"]] = relationship(
        "Batch", back_populates="inventory_item", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<InventoryItem {self.name}>"


class Batch(Base):
    """
    A lot of an inventory item with its own expiry and remaining quantity.

    Counts toward usable stock iff active, quantity > 0 and expiry in the future.
    """

    __tablename__ = "batches"
    __table_args__ = (
        Index("ix_batch_item_expiry", "inventory_item_id", "expiry_date"),
        CheckConstraint("quantity >= 0", name="ck_batch_quantity_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    inventory_item_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False, default=Decimal("0"))
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    inventory_item: Mapped["InventoryItem"] = relationship("InventoryItem", back_populates="batches")

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        expiry = self.expiry_date
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return bool(self.active) and self.quantity > 0 and expiry > now

    def __repr__(self) -> str:
        return f"<Batch {self.id} qty={self.quantity}>"


class StockConsumption(Base):
    """Quantity taken from a batch for an order item; replayed backwards when the item is removed."""

    __tablename__ = "stock_consumptions"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_item_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    batch_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    order_item: Mapped["OrderItem"] = relationship("OrderItem", back_populates="consumptions")
    batch: Mapped["Batch"] = relationship("Batch")
