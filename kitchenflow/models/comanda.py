"""
Comanda (kitchen ticket) models.

A Comanda is forked 1:1 from an Order when the order is submitted. Its items
are a snapshot: removing an OrderItem afterwards leaves the ComandaItem in place
(only the back-reference ``order_item_id`` is cleared).
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchenflow.database import Base
from kitchenflow.db_types import UUIDType, MoneyType
from kitchenflow.models.inventory import utcnow
from kitchenflow.models.order import ItemStatus

if TYPE_CHECKING:
    from kitchenflow.models.order import Order


class Comanda(Base):
    """Kitchen-facing ticket with denormalized header fields."""

    __tablename__ = "comandas"
    __table_args__ = (
        UniqueConstraint("order_id", name="uq_comanda_order"),
        Index("ix_comanda_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )

    # Snapshot of the order header at submission time
    table_ref: Mapped[str] = mapped_column(String(50), nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    employee_name: Mapped[str] = mapped_column(String(150), nullable=False)
    total: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    status: Mapped[str] = mapped_column(
        String(20), default=ItemStatus.PENDING.value, nullable=False, comment="pending, ready, served (derived from items)"
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    served_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    order: Mapped["Order"] = relationship("Order", back_populates="comanda")
    items: Mapped[List["ComandaItem"]] = relationship(
        "ComandaItem",
        back_populates="comanda",
        cascade="all, delete-orphan",
        order_by="ComandaItem.created_at",
    )

    def __repr__(self) -> str:
        return f"<Comanda {self.table_ref} {self.status}>"


class ComandaItem(Base):
    """Snapshot of one OrderItem at comanda-creation time, with its own kitchen status."""

    __tablename__ = "comanda_items"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    comanda_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("comandas.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("order_items.id", ondelete="SET NULL"), index=True
    )
    dish_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    dish_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    kitchen_notes: Mapped[Optional[str]] = mapped_column(Text)

    status: Mapped[str] = mapped_column(String(20), default=ItemStatus.PENDING.value, nullable=False)
    prepared_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    served_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    comanda: Mapped["Comanda"] = relationship("Comanda", back_populates="items")
