"""Kitchen station (screen) models and the static dish-to-screen assignment table."""
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchenflow.database import Base
from kitchenflow.db_types import UUIDType
from kitchenflow.models.inventory import utcnow


class KitchenScreen(Base):
    """A kitchen display responsible for a subset of dishes (grill, cold station, bar)."""

    __tablename__ = "kitchen_screens"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    assignments: Mapped[List["ScreenDishAssignment"]] = relationship(
        "ScreenDishAssignment", back_populates="screen", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<KitchenScreen {self.name}>"


class ScreenDishAssignment(Base):
    """Many-to-many (screen, dish). A dish with no row here is invisible on every screen."""

    __tablename__ = "screen_dish_assignments"
    __table_args__ = (
        UniqueConstraint("screen_id", "dish_id", name="uq_screen_dish"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    screen_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("kitchen_screens.id", ondelete="CASCADE"), nullable=False, index=True
    )
    dish_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("dishes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    screen: Mapped["KitchenScreen"] = relationship("KitchenScreen", back_populates="assignments")
