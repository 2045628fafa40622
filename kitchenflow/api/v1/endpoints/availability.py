from fastapi import APIRouter

from kitchenflow.api.deps import DB
from kitchenflow.schemas.availability import (
    AvailabilityRequest,
    AvailabilityResponse,
    AvailabilityResultResponse,
)
from kitchenflow.services.availability_service import AvailabilityService


router = APIRouter(tags=["Availability"])


@router.post(
    "",
    response_model=AvailabilityResponse,
)
async def compute_availability(
    data: AvailabilityRequest,
    db: DB,
):
    """
    Producible quantity and status tier per dish (and per variant when
    variant ids are given). A timeout that expires yields 504 indeterminate.
    """
    service = AvailabilityService(db)
    results = await service.compute_availability(
        dish_ids=data.dish_ids,
        variant_ids=data.variant_ids,
        timeout=data.timeout,
    )
    return AvailabilityResponse(
        low_stock_threshold=service.low_stock_threshold,
        results={
            key: AvailabilityResultResponse(
                dish_id=result.dish_id,
                variant_id=result.variant_id,
                status=result.status.value,
                producible_quantity=result.producible_quantity,
                missing_ingredients=result.missing_ingredients,
            )
            for key, result in results.items()
        },
    )
