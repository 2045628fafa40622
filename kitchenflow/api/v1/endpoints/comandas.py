from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, HTTPException, status, Query

from kitchenflow.api.deps import DB, ChangeFeed
from kitchenflow.models.order import ItemStatus
from kitchenflow.schemas.comanda import (
    BulkTransitionResponse,
    ComandaItemResponse,
    ComandaListResponse,
    ComandaResponse,
    ComandaStats,
    ItemFailureResponse,
    ItemStatusUpdate,
    KitchenNoteUpdate,
    TransitionResponse,
    build_comanda_response,
)
from kitchenflow.services.comanda_service import ComandaService


router = APIRouter(tags=["Comandas"])


@router.get(
    "",
    response_model=ComandaListResponse,
)
async def list_comandas(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    status: Optional[ItemStatus] = Query(None),
    active_only: bool = Query(False, description="Only tickets still pending or ready"),
    employee_id: Optional[uuid.UUID] = Query(None),
):
    """Get paginated list of kitchen tickets, oldest first."""
    service = ComandaService(db)
    skip = (page - 1) * size

    comandas, total = await service.list_comandas(
        status=status,
        active_only=active_only,
        employee_id=employee_id,
        skip=skip,
        limit=size,
    )

    return ComandaListResponse(
        items=[build_comanda_response(c) for c in comandas],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get(
    "/stats",
    response_model=ComandaStats,
)
async def get_comanda_stats(db: DB):
    """Ticket counts per status."""
    service = ComandaService(db)
    stats = await service.get_comanda_stats()
    return ComandaStats(**stats)


@router.get(
    "/{comanda_id}",
    response_model=ComandaResponse,
)
async def get_comanda(
    comanda_id: uuid.UUID,
    db: DB,
):
    """Get a kitchen ticket with its items."""
    service = ComandaService(db)
    comanda = await service.get_comanda_by_id(comanda_id)

    if not comanda:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Comanda not found"
        )

    return build_comanda_response(comanda)


@router.post(
    "/{comanda_id}/mark-all-ready",
    response_model=BulkTransitionResponse,
)
async def mark_all_ready(
    comanda_id: uuid.UUID,
    db: DB,
    feed: ChangeFeed,
    timeout: Optional[float] = Query(None, gt=0, le=60),
):
    """
    Advance every pending item to ready, item by item.

    Items that fail are listed in ``failed``; the ones already advanced stay
    ready. 504 indeterminate when ``timeout`` expires mid-way.
    """
    service = ComandaService(db, feed)
    result = await service.mark_all_ready(comanda_id, timeout=timeout)

    return BulkTransitionResponse(
        comanda_id=result.comanda_id,
        advanced=result.advanced,
        skipped=result.skipped,
        failed=[
            ItemFailureResponse(item_id=f.item_id, error=f.error, detail=f.detail)
            for f in result.failed
        ],
        success=result.success,
    )


@router.post(
    "/{comanda_id}/ready",
    response_model=ComandaResponse,
)
async def mark_ticket_ready(
    comanda_id: uuid.UUID,
    db: DB,
    feed: ChangeFeed,
):
    """Mark the whole ticket ready in one transaction."""
    service = ComandaService(db, feed)
    comanda = await service.mark_ticket_ready(comanda_id)
    return build_comanda_response(comanda)


@router.post(
    "/{comanda_id}/served",
    response_model=ComandaResponse,
)
async def mark_ticket_served(
    comanda_id: uuid.UUID,
    db: DB,
    feed: ChangeFeed,
):
    """Mark the whole ticket served; pending items pass through ready."""
    service = ComandaService(db, feed)
    comanda = await service.mark_ticket_served(comanda_id)
    return build_comanda_response(comanda)


@router.patch(
    "/items/{item_id}/status",
    response_model=TransitionResponse,
)
async def advance_item(
    item_id: uuid.UUID,
    data: ItemStatusUpdate,
    db: DB,
    feed: ChangeFeed,
):
    """
    Move one ticket item forward (pending -> ready -> served).

    Repeating the current status is a no-op with ``changed: false``.
    409 invalid_transition for backward or skipped moves.
    """
    service = ComandaService(db, feed)
    outcome = await service.advance_item(item_id, data.status)

    return TransitionResponse(
        item_id=outcome.item_id,
        previous_status=outcome.previous_status,
        status=outcome.status,
        changed=outcome.changed,
    )


@router.patch(
    "/items/{item_id}/kitchen-note",
    response_model=ComandaItemResponse,
)
async def add_kitchen_note(
    item_id: uuid.UUID,
    data: KitchenNoteUpdate,
    db: DB,
    feed: ChangeFeed,
):
    """Set or clear the kitchen's note on a ticket item."""
    service = ComandaService(db, feed)
    item = await service.add_kitchen_note(item_id, data.kitchen_notes)
    return ComandaItemResponse.model_validate(item)
