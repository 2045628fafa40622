from pydantic import BaseModel, Field, computed_field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from kitchenflow.schemas.base import BaseResponseSchema, BaseCreateSchema
from kitchenflow.services.ticket_state_machine import aggregate_status


# ==================== ORDER ITEM SCHEMAS ====================

class OrderItemCreate(BaseCreateSchema):
    """Order item creation schema."""
    dish_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: int = Field(1, ge=1)
    notes: Optional[str] = Field(None, max_length=500)


class OrderItemResponse(BaseResponseSchema):
    """Order item response schema."""
    id: uuid.UUID
    order_id: uuid.UUID
    dish_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    display_name: str
    unit_price: Decimal
    quantity: int
    status: str  # VARCHAR in DB
    notes: Optional[str] = None
    created_at: datetime

    @computed_field
    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


# ==================== ORDER SCHEMAS ====================

class OrderCreate(BaseCreateSchema):
    """Order creation schema. The waiter comes from the X-Employee-Id header."""
    table_ref: str = Field(..., min_length=1, max_length=50, description="Free text table identifier")
    notes: Optional[str] = None


class OrderResponse(BaseResponseSchema):
    """Order response schema."""
    id: uuid.UUID
    employee_id: uuid.UUID
    employee_name: Optional[str] = None
    table_ref: str
    status: str  # Recomputed from items on every read
    total: Decimal
    notes: Optional[str] = None
    item_count: int
    comanda_id: Optional[uuid.UUID] = None
    created_at: datetime
    submitted_at: Optional[datetime] = None

    @computed_field
    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None


class OrderDetailResponse(OrderResponse):
    """Order with its items."""
    items: List[OrderItemResponse] = []


class OrderListResponse(BaseModel):
    """Paginated order list."""
    items: List[OrderResponse]
    total: int
    page: int
    size: int
    pages: int


class StationAssignmentResponse(BaseModel):
    """Ticket items routed to each active kitchen screen."""
    order_id: uuid.UUID
    stations: dict[uuid.UUID, List[uuid.UUID]]


def build_order_response(order, include_items: bool = True):
    """Response for a loaded Order; the status is derived from its items."""
    data = dict(
        id=order.id,
        employee_id=order.employee_id,
        employee_name=order.employee.name if order.employee is not None else None,
        table_ref=order.table_ref,
        status=aggregate_status(item.status for item in order.items),
        total=order.total,
        notes=order.notes,
        item_count=order.item_count,
        comanda_id=order.comanda.id if order.comanda is not None else None,
        created_at=order.created_at,
        submitted_at=order.submitted_at,
    )
    if not include_items:
        return OrderResponse(**data)
    return OrderDetailResponse(
        **data,
        items=[OrderItemResponse.model_validate(item) for item in order.items],
    )
