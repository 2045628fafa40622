import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchenflow.database import Base
from kitchenflow.db_types import UUIDType, MoneyType
from kitchenflow.models.inventory import utcnow

if TYPE_CHECKING:
    from kitchenflow.models.comanda import Comanda
    from kitchenflow.models.employee import Employee
    from kitchenflow.models.inventory import StockConsumption


class ItemStatus(str, Enum):
    """Line item / ticket status. Totally ordered: pending < ready < served."""
    PENDING = "pending"   # Waiting in the kitchen
    READY = "ready"       # Prepared, waiting to be taken to the table
    SERVED = "served"     # Delivered to the table (terminal)


class Order(Base):
    """
    Waiter-facing tab for a table.
    Holds the selected dishes until it is submitted to the kitchen.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index('ix_order_status_created', 'status', 'created_at'),
        Index('ix_order_employee_created', 'employee_id', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("employees.id", ondelete="RESTRICT"),
        nullable=False
    )

    # Free text: "Mesa 4", "Barra", "Terraza 2"
    table_ref: Mapped[str] = mapped_column(String(50), nullable=False)

    # Denormalized copy of the aggregate status; always rewritten from items
    status: Mapped[str] = mapped_column(
        String(20),
        default=ItemStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="pending, ready, served (derived from items)"
    )

    total: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    employee: Mapped["Employee"] = relationship("Employee")
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )
    comanda: Mapped[Optional["Comanda"]] = relationship("Comanda", back_populates="order", uselist=False)

    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def __repr__(self) -> str:
        return f"<Order {self.table_ref} {self.id}>"


class OrderItem(Base):
    """A dish (or dish variant) on an order."""
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    dish_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("dishes.id", ondelete="RESTRICT"),
        nullable=False
    )
    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("dish_variants.id", ondelete="SET NULL")
    )

    # Dish name, or the chosen variant's name
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), default=ItemStatus.PENDING.value, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    consumptions: Mapped[List["StockConsumption"]] = relationship(
        "StockConsumption", back_populates="order_item", cascade="all, delete-orphan"
    )

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity
