"""
Ticket Board: one client's local read cache of active kitchen tickets.

The board never trusts change payloads; every change notification triggers a
re-fetch of authoritative state. Two rules keep that safe while the client is
also mutating tickets:

- Optimistic item statuses are overlaid on fetched state until the mutation
  finishes; the overlay and the fetched status merge by rank, so the view of
  an item never moves backward.
- Each mutation bumps a generation counter. A refresh whose fetch started
  under an older generation is discarded and re-run, so a slow fetch can't
  clobber a newer write with older state.
"""
import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import async_sessionmaker

from kitchenflow.models.order import Order, OrderItem
from kitchenflow.schemas.changes import ResourceKind
from kitchenflow.schemas.comanda import ComandaResponse, build_comanda_response
from kitchenflow.services.comanda_service import ComandaService
from kitchenflow.services.station_router import KitchenScreenService
from kitchenflow.services.ticket_state_machine import STATUS_RANK, aggregate_status

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[List[ComandaResponse]]]


class TicketSource:
    """Authoritative reads for clients running next to the database."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def active_comandas(self, screen_id: Optional[uuid.UUID] = None) -> List[ComandaResponse]:
        async with self._session_factory() as session:
            if screen_id is not None:
                view = await KitchenScreenService(session).get_screen_comandas(screen_id)
                return [build_comanda_response(comanda, items) for comanda, items in view]
            comandas, _ = await ComandaService(session).list_comandas(active_only=True, limit=500)
            return [build_comanda_response(comanda) for comanda in comandas]

    async def comanda(self, comanda_id: uuid.UUID) -> Optional[ComandaResponse]:
        async with self._session_factory() as session:
            comanda = await ComandaService(session).get_comanda_by_id(comanda_id)
            return build_comanda_response(comanda) if comanda is not None else None

    async def order_item(self, order_item_id: uuid.UUID) -> Optional[Dict[str, Any]]:
        async with self._session_factory() as session:
            stmt = (
                select(OrderItem)
                .options(selectinload(OrderItem.order))
                .where(OrderItem.id == order_item_id)
            )
            item = (await session.execute(stmt)).scalar_one_or_none()
            if item is None:
                return None
            order: Order = item.order
            return {
                "id": item.id,
                "order_id": item.order_id,
                "display_name": item.display_name,
                "quantity": item.quantity,
                "status": item.status,
                "table_ref": order.table_ref,
                "employee_id": order.employee_id,
            }


def _max_status(a: str, b: str) -> str:
    return a if STATUS_RANK.get(a, 0) >= STATUS_RANK.get(b, 0) else b


class TicketBoard:
    """
    Local cache of active comandas, refreshed on change notifications.

        board = TicketBoard(lambda: source.active_comandas(screen_id))
        await board.attach(relay)
        await board.refresh()
    """

    RESOURCES = (ResourceKind.COMANDAS, ResourceKind.COMANDA_ITEMS)
    MAX_REFRESH_ATTEMPTS = 3

    def __init__(self, fetch: Fetcher):
        self._fetch = fetch
        self._tickets: Dict[uuid.UUID, ComandaResponse] = {}
        self._optimistic: Dict[uuid.UUID, str] = {}
        self._generation = 0
        self._refresh_lock = asyncio.Lock()
        self._subscriptions: List[Any] = []
        self.refresh_count = 0

    # ==================== VIEW ====================

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def tickets(self) -> List[ComandaResponse]:
        return [self._overlay(ticket) for ticket in self._tickets.values()]

    def get(self, comanda_id: uuid.UUID) -> Optional[ComandaResponse]:
        ticket = self._tickets.get(comanda_id)
        return self._overlay(ticket) if ticket is not None else None

    def item_status(self, item_id: uuid.UUID) -> Optional[str]:
        for ticket in self.tickets:
            for item in ticket.items:
                if item.id == item_id:
                    return item.status
        return None

    def _overlay(self, ticket: ComandaResponse) -> ComandaResponse:
        if not self._optimistic or not any(item.id in self._optimistic for item in ticket.items):
            return ticket
        items = [
            item.model_copy(update={"status": _max_status(item.status, self._optimistic[item.id])})
            if item.id in self._optimistic else item
            for item in ticket.items
        ]
        return ticket.model_copy(
            update={"items": items, "status": aggregate_status(item.status for item in items)}
        )

    # ==================== SYNC ====================

    async def attach(self, relay) -> None:
        for resource in self.RESOURCES:
            self._subscriptions.append(await relay.subscribe(resource, self.on_change))

    async def detach(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for sub in subscriptions:
            await sub.cancel()

    async def on_change(self, event) -> None:
        await self.refresh()

    async def refresh(self) -> List[ComandaResponse]:
        """Re-fetch authoritative state; re-run if a mutation landed during the fetch."""
        async with self._refresh_lock:
            for _ in range(self.MAX_REFRESH_ATTEMPTS):
                started = self._generation
                snapshot = await self._fetch()
                if started == self._generation:
                    break
                logger.debug("Ticket board refresh raced a mutation; fetching again")
            self._tickets = {ticket.id: ticket for ticket in snapshot}
            self.refresh_count += 1
        return self.tickets

    async def mutate(self, item_id: uuid.UUID, status: str, action: Callable[[], Awaitable[Any]]) -> Any:
        """
        Show ``status`` for an item immediately, run ``action`` (the real
        write), then refresh. The optimistic value is dropped whether or not
        the write succeeds.
        """
        status = getattr(status, "value", status)
        self._generation += 1
        self._optimistic[item_id] = status
        try:
            return await action()
        finally:
            self._optimistic.pop(item_id, None)
            self._generation += 1
            await self.refresh()
