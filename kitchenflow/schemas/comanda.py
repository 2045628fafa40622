from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from kitchenflow.models.order import ItemStatus
from kitchenflow.schemas.base import BaseResponseSchema, BaseUpdateSchema
from kitchenflow.services.ticket_state_machine import aggregate_status


# ==================== COMANDA ITEM SCHEMAS ====================

class ComandaItemResponse(BaseResponseSchema):
    """Kitchen ticket line."""
    id: uuid.UUID
    comanda_id: uuid.UUID
    order_item_id: Optional[uuid.UUID] = None
    dish_id: uuid.UUID
    dish_name: str
    quantity: int
    unit_price: Decimal
    notes: Optional[str] = None
    kitchen_notes: Optional[str] = None
    status: str  # VARCHAR in DB
    prepared_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    created_at: datetime


class ItemStatusUpdate(BaseUpdateSchema):
    """Advance one ticket item."""
    status: ItemStatus


class KitchenNoteUpdate(BaseUpdateSchema):
    kitchen_notes: Optional[str] = Field(None, max_length=500)


class TransitionResponse(BaseModel):
    item_id: uuid.UUID
    previous_status: str
    status: str
    changed: bool


# ==================== COMANDA SCHEMAS ====================

class ComandaResponse(BaseResponseSchema):
    """Kitchen ticket header with its items."""
    id: uuid.UUID
    order_id: uuid.UUID
    table_ref: str
    employee_id: uuid.UUID
    employee_name: str
    total: Decimal
    item_count: int
    notes: Optional[str] = None
    status: str  # Recomputed from items on every read
    created_at: datetime
    served_at: Optional[datetime] = None
    items: List[ComandaItemResponse] = []


class ComandaListResponse(BaseModel):
    """Paginated comanda list."""
    items: List[ComandaResponse]
    total: int
    page: int
    size: int
    pages: int


class ComandaStats(BaseModel):
    total: int
    pending: int
    ready: int
    served: int


class ItemFailureResponse(BaseModel):
    item_id: uuid.UUID
    error: str
    detail: str


class BulkTransitionResponse(BaseModel):
    """Per-item outcome of mark-all-ready; successes are never rolled back."""
    comanda_id: uuid.UUID
    advanced: List[uuid.UUID] = []
    skipped: List[uuid.UUID] = []
    failed: List[ItemFailureResponse] = []
    success: bool


def build_comanda_response(comanda, items=None) -> ComandaResponse:
    """
    Response for a loaded Comanda. ``items`` narrows the lines shown (station
    view); the status is always derived from every item of the ticket.
    """
    lines = comanda.items if items is None else items
    return ComandaResponse(
        id=comanda.id,
        order_id=comanda.order_id,
        table_ref=comanda.table_ref,
        employee_id=comanda.employee_id,
        employee_name=comanda.employee_name,
        total=comanda.total,
        item_count=comanda.item_count,
        notes=comanda.notes,
        status=aggregate_status(item.status for item in comanda.items),
        created_at=comanda.created_at,
        served_at=comanda.served_at,
        items=[ComandaItemResponse.model_validate(item) for item in lines],
    )
