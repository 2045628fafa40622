"""
Change-feed WebSocket.

Each connection gets its own relay subscription on one resource, optionally
filtered on a ``column=value`` pair, and receives every matching change as a
JSON message. Payloads are advisory: clients re-fetch the row before acting.
"""
from typing import Optional
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from kitchenflow.config import settings
from kitchenflow.schemas.changes import ChangeSubscriptionRequest, ResourceKind, dump_change_event
from kitchenflow.services.change_relay import ChangeFeedRelay


logger = logging.getLogger(__name__)

router = APIRouter(tags=["Changes"])


@router.websocket("/ws")
async def change_feed_socket(
    websocket: WebSocket,
    resource: ResourceKind = Query(...),
    column: Optional[str] = Query(None),
    value: Optional[str] = Query(None),
):
    feed = getattr(websocket.app.state, "change_feed", None)
    if feed is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    request = ChangeSubscriptionRequest(resource=resource, column=column, value=value)
    await websocket.accept()

    async def forward(event) -> None:
        await websocket.send_text(dump_change_event(event))

    client = websocket.client
    relay = ChangeFeedRelay.from_settings(
        feed,
        settings,
        client_name=f"ws:{client.host}:{client.port}" if client else "ws",
    )
    await relay.start()
    try:
        await relay.subscribe(request.resource, forward, request.row_filter())
        # Client messages are ignored; the loop only detects disconnects
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Change feed client %s disconnected", relay.client_name)
    finally:
        await relay.stop()
