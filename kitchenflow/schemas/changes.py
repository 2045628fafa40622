"""
Change-feed event schemas.

Each event is one of three tagged variants (insert / update / delete) carrying
the resource it concerns, the row id and an advisory ``row`` snapshot. The
payload may be partial or stale: consumers re-fetch authoritative state and
only use ``row`` for filtering.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class ResourceKind(str, Enum):
    """Resources that publish change notifications."""
    COMANDAS = "comandas"
    COMANDA_ITEMS = "comanda_items"
    ORDERS = "orders"
    ORDER_ITEMS = "order_items"
    INVENTORY_ITEMS = "inventory_items"
    BATCHES = "batches"
    RECIPES = "recipes"
    KITCHEN_SCREENS = "kitchen_screens"
    SCREEN_DISH_ASSIGNMENTS = "screen_dish_assignments"


class ChangeOperation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _RowChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource: ResourceKind
    row_id: str
    row: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=_now)


class RowInserted(_RowChange):
    operation: Literal["insert"] = "insert"


class RowUpdated(_RowChange):
    operation: Literal["update"] = "update"


class RowDeleted(_RowChange):
    operation: Literal["delete"] = "delete"


ChangeEvent = Annotated[
    Union[RowInserted, RowUpdated, RowDeleted],
    Field(discriminator="operation"),
]

change_event_adapter: TypeAdapter = TypeAdapter(ChangeEvent)


def parse_change_event(data) -> "RowInserted | RowUpdated | RowDeleted":
    """Parse a JSON string or dict into the matching tagged variant."""
    if isinstance(data, (str, bytes)):
        return change_event_adapter.validate_json(data)
    return change_event_adapter.validate_python(data)


def dump_change_event(event) -> str:
    return event.model_dump_json()


class RowFilter(BaseModel):
    """
    Optional ``column = value`` filter on the advisory payload.

    Events whose payload lacks the column are delivered anyway, since
    over-delivery only costs a re-fetch.
    """
    model_config = ConfigDict(frozen=True)

    column: str
    value: str

    def matches(self, event) -> bool:
        if self.column not in event.row:
            return True
        actual = event.row.get(self.column)
        return actual is not None and str(actual) == self.value


class ChangeSubscriptionRequest(BaseModel):
    """Query parameters of the change-feed WebSocket."""
    resource: ResourceKind
    column: Optional[str] = None
    value: Optional[str] = None

    def row_filter(self) -> Optional[RowFilter]:
        if self.column and self.value is not None:
            return RowFilter(column=self.column, value=self.value)
        return None
