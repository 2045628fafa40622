from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
import uuid

from kitchenflow.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from kitchenflow.schemas.comanda import ComandaResponse


class KitchenScreenCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    active: bool = True


class KitchenScreenUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    active: Optional[bool] = None


class KitchenScreenDuplicate(BaseCreateSchema):
    new_name: str = Field(..., min_length=1, max_length=100)


class KitchenScreenResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    active: bool
    dish_ids: List[uuid.UUID] = []
    created_at: datetime


class ScreenDishesResponse(BaseModel):
    screen_id: uuid.UUID
    dish_ids: List[uuid.UUID]


class AssignmentResult(BaseModel):
    screen_id: uuid.UUID
    assigned: List[uuid.UUID] = []
    changed: bool


class ScreenComandasResponse(BaseModel):
    """Active comandas as a station sees them: only the items routed to it."""
    screen_id: uuid.UUID
    comandas: List[ComandaResponse]
