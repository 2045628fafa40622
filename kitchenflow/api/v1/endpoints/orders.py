from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, HTTPException, status, Query

from kitchenflow.api.deps import DB, ChangeFeed, CurrentEmployee
from kitchenflow.models.order import ItemStatus
from kitchenflow.schemas.comanda import ComandaResponse, build_comanda_response
from kitchenflow.schemas.order import (
    OrderCreate,
    OrderDetailResponse,
    OrderItemCreate,
    OrderItemResponse,
    OrderListResponse,
    StationAssignmentResponse,
    build_order_response,
)
from kitchenflow.services.order_service import OrderService
from kitchenflow.services.station_router import KitchenScreenService


router = APIRouter(tags=["Orders"])


@router.get(
    "",
    response_model=OrderListResponse,
)
async def list_orders(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    employee_id: Optional[uuid.UUID] = Query(None),
    status: Optional[ItemStatus] = Query(None),
    submitted: Optional[bool] = Query(None, description="Only submitted (true) or open (false) orders"),
):
    """Get paginated list of orders, newest first."""
    service = OrderService(db)
    skip = (page - 1) * size

    orders, total = await service.list_orders(
        employee_id=employee_id,
        status=status,
        submitted=submitted,
        skip=skip,
        limit=size,
    )

    return OrderListResponse(
        items=[build_order_response(o, include_items=False) for o in orders],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.post(
    "",
    response_model=OrderDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    data: OrderCreate,
    db: DB,
    feed: ChangeFeed,
    current_employee: CurrentEmployee,
):
    """Open an empty order for a table on behalf of the calling employee."""
    service = OrderService(db, feed)

    try:
        order = await service.create_order(data.table_ref, current_employee.id, notes=data.notes)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    return build_order_response(order)


@router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
)
async def get_order(
    order_id: uuid.UUID,
    db: DB,
):
    """Get order details by ID."""
    service = OrderService(db)
    order = await service.get_order_by_id(order_id)

    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )

    return build_order_response(order)


@router.post(
    "/{order_id}/items",
    response_model=OrderItemResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_item(
    order_id: uuid.UUID,
    data: OrderItemCreate,
    db: DB,
    feed: ChangeFeed,
    current_employee: CurrentEmployee,
):
    """
    Add a dish to an open order.

    409 insufficient_stock when the quantity exceeds what current stock can
    produce; the body carries ``requested`` and ``available``.
    """
    service = OrderService(db, feed)

    try:
        item = await service.add_item(
            order_id,
            data.dish_id,
            data.quantity,
            variant_id=data.variant_id,
            notes=data.notes,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    return OrderItemResponse.model_validate(item)


@router.delete(
    "/items/{item_id}",
    response_model=OrderDetailResponse,
)
async def remove_item(
    item_id: uuid.UUID,
    db: DB,
    feed: ChangeFeed,
    current_employee: CurrentEmployee,
    allow_after_submission: bool = Query(False),
):
    """
    Remove an item and return its stock. After submission only with
    ``allow_after_submission``; the kitchen ticket keeps its copy.
    """
    service = OrderService(db, feed)
    order = await service.remove_item(item_id, allow_after_submission=allow_after_submission)
    return build_order_response(order)


@router.post(
    "/{order_id}/submit",
    response_model=ComandaResponse,
)
async def submit_order(
    order_id: uuid.UUID,
    db: DB,
    feed: ChangeFeed,
    current_employee: CurrentEmployee,
):
    """
    Send the order to the kitchen. Repeated calls return the same comanda.
    409 no_station_configured when no kitchen screen is active.
    """
    service = OrderService(db, feed)
    comanda = await service.submit_order(order_id)
    return build_comanda_response(comanda)


@router.get(
    "/{order_id}/stations",
    response_model=StationAssignmentResponse,
)
async def assign_ticket_to_stations(
    order_id: uuid.UUID,
    db: DB,
):
    """Which active kitchen screen prepares which item of this ticket."""
    service = KitchenScreenService(db)
    stations = await service.assign_ticket_to_stations(order_id)
    return StationAssignmentResponse(order_id=order_id, stations=stations)
