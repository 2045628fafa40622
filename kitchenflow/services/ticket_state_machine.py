"""
Ticket Item State Machine

This module is the SINGLE SOURCE OF TRUTH for kitchen item status transitions
and for the aggregate status of a ticket (Order or Comanda).
All status changes must go through this module.

    pending ──> ready ──> served

Rules:
- Transitions only move one step forward; backward or skipped moves are rejected.
- Re-applying the current status is a no-op, so duplicate or reordered
  change notifications can be replayed safely.
- A ticket's aggregate status is a pure function of its items and is
  recomputed on every read; the stored column is only a denormalized copy.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from kitchenflow.core.enum_utils import get_enum_value, to_enum
from kitchenflow.core.exceptions import InvalidTransition
from kitchenflow.models.order import ItemStatus

logger = logging.getLogger(__name__)


# =============================================================================
# STATUS ORDER
# =============================================================================

STATUS_RANK: Dict[str, int] = {
    ItemStatus.PENDING.value: 0,
    ItemStatus.READY.value: 1,
    ItemStatus.SERVED.value: 2,
}

# current_status -> the only status it may advance to
ITEM_TRANSITIONS: Dict[str, List[str]] = {
    ItemStatus.PENDING.value: [ItemStatus.READY.value],
    ItemStatus.READY.value: [ItemStatus.SERVED.value],
    ItemStatus.SERVED.value: [],  # Terminal state
}

TRANSITION_ACTIONS: Dict[Tuple[str, str], str] = {
    (ItemStatus.PENDING.value, ItemStatus.READY.value): "Mark Ready",
    (ItemStatus.READY.value, ItemStatus.SERVED.value): "Mark Served",
}


@dataclass
class TransitionOutcome:
    """Result of a single item transition."""
    item_id: str
    previous_status: str
    status: str
    changed: bool


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def rank(status) -> int:
    value = get_enum_value(status)
    if value not in STATUS_RANK:
        raise InvalidTransition(f"Unknown status '{value}'", current=None, target=value)
    return STATUS_RANK[value]


def can_transition(current_status, new_status) -> bool:
    """Check if a one-step forward transition is allowed."""
    allowed = ITEM_TRANSITIONS.get(get_enum_value(current_status), [])
    return get_enum_value(new_status) in allowed


def get_allowed_transitions(current_status) -> List[str]:
    return ITEM_TRANSITIONS.get(get_enum_value(current_status), [])


def get_transition_action(current_status, new_status) -> str:
    current, new = get_enum_value(current_status), get_enum_value(new_status)
    return TRANSITION_ACTIONS.get((current, new), f"{current} -> {new}")


def is_terminal(status) -> bool:
    return get_enum_value(status) == ItemStatus.SERVED.value


def validate_transition(current_status, new_status) -> bool:
    """
    Validate a status transition. Raises InvalidTransition if invalid.

    Returns False when the item is already in ``new_status`` (idempotent no-op),
    True when the transition should be applied.
    """
    current = get_enum_value(current_status)
    target = get_enum_value(new_status)

    if to_enum(target, ItemStatus) is None:
        raise InvalidTransition(f"Unknown status '{target}'", current=current, target=target)

    if current == target:
        return False

    if not can_transition(current, target):
        if rank(target) < rank(current):
            message = f"Cannot move item back from '{current}' to '{target}'"
        elif is_terminal(current):
            message = f"Item in '{current}' status is in a terminal state"
        else:
            allowed = ", ".join(get_allowed_transitions(current))
            message = f"Cannot skip from '{current}' to '{target}'. Allowed transitions: {allowed}"
        raise InvalidTransition(message, current=current, target=target)

    return True


def aggregate_status(statuses: Iterable) -> str:
    """
    Derive a ticket's status from its items' statuses.

    served  iff every item is served (and there is at least one item)
    ready   iff not all served and at least one item is ready
    pending otherwise
    """
    values = [get_enum_value(s) for s in statuses]
    if values and all(v == ItemStatus.SERVED.value for v in values):
        return ItemStatus.SERVED.value
    if any(v == ItemStatus.READY.value for v in values):
        return ItemStatus.READY.value
    return ItemStatus.PENDING.value


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_item(item, new_status, now: Optional[datetime] = None) -> TransitionOutcome:
    """
    Transition a ComandaItem or OrderItem to a new status.

    This function:
    1. Validates the transition is allowed
    2. Updates the status
    3. Sets the preparation timestamps (only on models that carry them)

    Raises:
        InvalidTransition: If the transition is backward or skips a step
    """
    previous = get_enum_value(item.status)
    target = get_enum_value(new_status)

    try:
        changed = validate_transition(previous, target)
    except InvalidTransition:
        logger.warning("Rejected transition %s -> %s for item %s", previous, target, item.id)
        raise

    if changed:
        now = now or datetime.now(timezone.utc)
        item.status = target
        if target == ItemStatus.READY.value and hasattr(item, "prepared_at"):
            item.prepared_at = now
        elif target == ItemStatus.SERVED.value and hasattr(item, "served_at"):
            item.served_at = now

    return TransitionOutcome(item_id=str(item.id), previous_status=previous, status=target, changed=changed)


def path_to(current_status, target_status) -> List[str]:
    """
    Forward steps from ``current_status`` to ``target_status`` (exclusive of current).

    Used by the server-side ticket procedures that move whole tickets forward,
    e.g. ``mark_ticket_served`` steps a pending item through ready.
    """
    current, target = rank(current_status), rank(target_status)
    if target <= current:
        return []
    ordered = sorted(STATUS_RANK, key=STATUS_RANK.get)
    return ordered[current + 1:target + 1]
