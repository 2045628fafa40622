import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from kitchenflow.database import Base
from kitchenflow.db_types import UUIDType
from kitchenflow.models.inventory import utcnow


class EmployeeRole(str, Enum):
    """Employee role enumeration."""
    WAITER = "waiter"
    KITCHEN = "kitchen"
    CASHIER = "cashier"
    ADMIN = "admin"


class Employee(Base):
    """A named employee; the only identity the workflow knows about."""

    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EmployeeRole.WAITER.value, comment="waiter, kitchen, cashier, admin"
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Employee {self.name}>"
