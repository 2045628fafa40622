from typing import List
import uuid

from fastapi import APIRouter, HTTPException, status, Query

from kitchenflow.api.deps import DB, ChangeFeed
from kitchenflow.schemas.comanda import build_comanda_response
from kitchenflow.schemas.kitchen import (
    AssignmentResult,
    KitchenScreenCreate,
    KitchenScreenDuplicate,
    KitchenScreenResponse,
    KitchenScreenUpdate,
    ScreenComandasResponse,
    ScreenDishesResponse,
)
from kitchenflow.services.station_router import KitchenScreenService


router = APIRouter(tags=["Kitchen Screens"])


def _build_screen_response(screen) -> KitchenScreenResponse:
    return KitchenScreenResponse(
        id=screen.id,
        name=screen.name,
        description=screen.description,
        active=screen.active,
        dish_ids=sorted((a.dish_id for a in screen.assignments), key=str),
        created_at=screen.created_at,
    )


@router.get(
    "",
    response_model=List[KitchenScreenResponse],
)
async def list_screens(
    db: DB,
    active_only: bool = Query(False),
):
    """List kitchen screens with their assigned dishes."""
    service = KitchenScreenService(db)
    screens = await service.list_screens(active_only=active_only)
    return [_build_screen_response(s) for s in screens]


@router.post(
    "",
    response_model=KitchenScreenResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_screen(
    data: KitchenScreenCreate,
    db: DB,
    feed: ChangeFeed,
):
    """Create a kitchen screen (station)."""
    service = KitchenScreenService(db, feed)

    try:
        screen = await service.create_screen(data.name, description=data.description, active=data.active)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    return _build_screen_response(screen)


@router.get(
    "/{screen_id}",
    response_model=KitchenScreenResponse,
)
async def get_screen(
    screen_id: uuid.UUID,
    db: DB,
):
    service = KitchenScreenService(db)
    screen = await service.get_screen(screen_id)
    return _build_screen_response(screen)


@router.patch(
    "/{screen_id}",
    response_model=KitchenScreenResponse,
)
async def update_screen(
    screen_id: uuid.UUID,
    data: KitchenScreenUpdate,
    db: DB,
    feed: ChangeFeed,
):
    """Rename, describe or (de)activate a screen. Inactive screens route nothing."""
    service = KitchenScreenService(db, feed)

    try:
        screen = await service.update_screen(
            screen_id,
            name=data.name,
            description=data.description,
            active=data.active,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    return _build_screen_response(screen)


@router.get(
    "/{screen_id}/dishes",
    response_model=ScreenDishesResponse,
)
async def dishes_for_screen(
    screen_id: uuid.UUID,
    db: DB,
):
    service = KitchenScreenService(db)
    dish_ids = await service.dishes_for_screen(screen_id)
    return ScreenDishesResponse(screen_id=screen_id, dish_ids=sorted(dish_ids, key=str))


@router.post(
    "/{screen_id}/dishes/{dish_id}",
    response_model=AssignmentResult,
)
async def assign_dish(
    screen_id: uuid.UUID,
    dish_id: uuid.UUID,
    db: DB,
    feed: ChangeFeed,
):
    """Assign a dish to a screen. Assigning twice is a no-op."""
    service = KitchenScreenService(db, feed)
    changed = await service.assign_dish(screen_id, dish_id)
    return AssignmentResult(screen_id=screen_id, assigned=[dish_id] if changed else [], changed=changed)


@router.delete(
    "/{screen_id}/dishes/{dish_id}",
    response_model=AssignmentResult,
)
async def unassign_dish(
    screen_id: uuid.UUID,
    dish_id: uuid.UUID,
    db: DB,
    feed: ChangeFeed,
):
    service = KitchenScreenService(db, feed)
    changed = await service.unassign_dish(screen_id, dish_id)
    return AssignmentResult(screen_id=screen_id, changed=changed)


@router.post(
    "/{screen_id}/categories/{category_id}",
    response_model=AssignmentResult,
)
async def assign_category(
    screen_id: uuid.UUID,
    category_id: uuid.UUID,
    db: DB,
    feed: ChangeFeed,
):
    """Assign every active dish currently in the category."""
    service = KitchenScreenService(db, feed)
    added = await service.assign_category(screen_id, category_id)
    return AssignmentResult(screen_id=screen_id, assigned=added, changed=bool(added))


@router.post(
    "/{screen_id}/duplicate",
    response_model=KitchenScreenResponse,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_station(
    screen_id: uuid.UUID,
    data: KitchenScreenDuplicate,
    db: DB,
    feed: ChangeFeed,
):
    """Copy a screen together with its dish assignments."""
    service = KitchenScreenService(db, feed)

    try:
        screen = await service.duplicate_station(screen_id, data.new_name)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    return _build_screen_response(screen)


@router.get(
    "/{screen_id}/comandas",
    response_model=ScreenComandasResponse,
)
async def get_screen_comandas(
    screen_id: uuid.UUID,
    db: DB,
):
    """Active tickets as this station sees them: only its own items."""
    service = KitchenScreenService(db)
    view = await service.get_screen_comandas(screen_id)
    return ScreenComandasResponse(
        screen_id=screen_id,
        comandas=[build_comanda_response(comanda, items) for comanda, items in view],
    )
