"""
Waiter notifications: "item ready", "order ready", "item served".

Each waiter client owns a NotificationCenter fed by its ChangeFeedRelay.
Subscriptions are filtered on the advisory ``status`` column, but a
notification is only raised after re-fetching the row and confirming the
authoritative status, so stale or duplicate events never produce a false or
repeated alert.
"""
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple

from kitchenflow.models.order import ItemStatus
from kitchenflow.schemas.changes import ResourceKind, RowFilter
from kitchenflow.services.ticket_state_machine import STATUS_RANK

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    ITEM_READY = "item_ready"
    ORDER_READY = "order_ready"
    ITEM_SERVED = "item_served"


@dataclass
class Notification:
    kind: NotificationKind
    title: str
    message: str
    order_id: uuid.UUID
    table_ref: str
    row_id: uuid.UUID
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    read: bool = False


def _at_least(status: str, target: ItemStatus) -> bool:
    return STATUS_RANK.get(status, -1) >= STATUS_RANK[target.value]


class NotificationCenter:
    """
    Bounded, per-client notification list.

    ``fetch_order_item(id)`` must return a mapping with ``order_id``,
    ``display_name``, ``quantity``, ``status``, ``table_ref`` and
    ``employee_id`` (``TicketSource.order_item`` does); ``fetch_comanda(id)``
    returns a ComandaResponse. Both return None when the row is gone.
    """

    def __init__(
        self,
        fetch_order_item: Callable[[uuid.UUID], Awaitable[Optional[Dict[str, Any]]]],
        fetch_comanda: Callable[[uuid.UUID], Awaitable[Any]],
        employee_id: Optional[uuid.UUID] = None,
        max_size: int = 50,
    ):
        self._fetch_order_item = fetch_order_item
        self._fetch_comanda = fetch_comanda
        self.employee_id = employee_id
        self._notifications: Deque[Notification] = deque(maxlen=max_size)
        self._seen: Set[Tuple[NotificationKind, uuid.UUID]] = set()
        self._listeners: List[Callable[[List[Notification]], Any]] = []
        self._subscriptions: List[Any] = []

    # ==================== LIFECYCLE ====================

    async def attach(self, relay) -> None:
        self._subscriptions = [
            await relay.subscribe(
                ResourceKind.ORDER_ITEMS, self.on_item_ready, RowFilter(column="status", value=ItemStatus.READY.value)
            ),
            await relay.subscribe(
                ResourceKind.ORDER_ITEMS, self.on_item_served, RowFilter(column="status", value=ItemStatus.SERVED.value)
            ),
            await relay.subscribe(
                ResourceKind.COMANDAS, self.on_comanda_ready, RowFilter(column="status", value=ItemStatus.READY.value)
            ),
        ]

    async def detach(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for sub in subscriptions:
            await sub.cancel()

    # ==================== HANDLERS ====================

    def _mine(self, employee_id) -> bool:
        return self.employee_id is None or str(employee_id) == str(self.employee_id)

    async def on_item_ready(self, event) -> None:
        await self._on_item(event, ItemStatus.READY, NotificationKind.ITEM_READY, "Dish ready", "ready to serve")

    async def on_item_served(self, event) -> None:
        await self._on_item(event, ItemStatus.SERVED, NotificationKind.ITEM_SERVED, "Served", "served")

    async def _on_item(self, event, target: ItemStatus, kind: NotificationKind, title: str, verb: str) -> None:
        item_id = uuid.UUID(event.row_id)
        item = await self._fetch_order_item(item_id)
        if item is None or not _at_least(item["status"], target) or not self._mine(item["employee_id"]):
            return
        self._add(
            Notification(
                kind=kind,
                title=title,
                message=f"{item['quantity']}x {item['display_name']} {verb} ({item['table_ref']})",
                order_id=item["order_id"],
                table_ref=item["table_ref"],
                row_id=item_id,
            )
        )

    async def on_comanda_ready(self, event) -> None:
        comanda = await self._fetch_comanda(uuid.UUID(event.row_id))
        if comanda is None or not self._mine(comanda.employee_id):
            return
        # The whole order is ready once nothing is left in preparation
        if not comanda.items or any(item.status == ItemStatus.PENDING.value for item in comanda.items):
            return
        if comanda.status == ItemStatus.SERVED.value:
            return
        self._add(
            Notification(
                kind=NotificationKind.ORDER_READY,
                title="Order ready",
                message=f"The order for {comanda.table_ref} is ready",
                order_id=comanda.order_id,
                table_ref=comanda.table_ref,
                row_id=comanda.id,
            )
        )

    # ==================== LIST ====================

    def _add(self, notification: Notification) -> None:
        key = (notification.kind, notification.row_id)
        if key in self._seen:
            return
        self._seen.add(key)
        self._notifications.appendleft(notification)
        logger.info("Notification %s: %s", notification.kind.value, notification.message)
        self._notify_listeners()

    def _notify_listeners(self) -> None:
        snapshot = self.notifications
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Notification listener failed")

    @property
    def notifications(self) -> List[Notification]:
        """Newest first."""
        return list(self._notifications)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._notifications if not n.read)

    def mark_as_read(self, notification_id: str) -> bool:
        for notification in self._notifications:
            if notification.id == notification_id:
                notification.read = True
                self._notify_listeners()
                return True
        return False

    def mark_all_as_read(self) -> None:
        for notification in self._notifications:
            notification.read = True
        self._notify_listeners()

    def clear_all(self) -> None:
        self._notifications.clear()
        self._notify_listeners()

    def add_listener(self, listener: Callable[[List[Notification]], Any]) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove
