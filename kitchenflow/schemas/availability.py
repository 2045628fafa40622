from pydantic import BaseModel, Field
from typing import Optional, List, Dict
import uuid

from kitchenflow.schemas.base import BaseCreateSchema


class AvailabilityRequest(BaseCreateSchema):
    """Dishes (and optionally specific variants) to check."""
    dish_ids: List[uuid.UUID] = Field(default_factory=list)
    variant_ids: List[uuid.UUID] = Field(default_factory=list)
    timeout: Optional[float] = Field(None, gt=0, le=60, description="Seconds before the result is indeterminate")


class AvailabilityResultResponse(BaseModel):
    dish_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    status: str  # available, low_stock, no_stock, no_recipe
    producible_quantity: int
    missing_ingredients: List[str] = []


class AvailabilityResponse(BaseModel):
    """Keyed by ``"<dish_id>"`` or ``"<dish_id>:<variant_id>"``."""
    low_stock_threshold: int
    results: Dict[str, AvailabilityResultResponse]
