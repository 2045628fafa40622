"""
Error taxonomy for the order-to-kitchen workflow.

Services raise these typed errors instead of generic faults so the API layer
(and any automation built on the services) can branch on ``kind``:

    InsufficientStock     requested quantity exceeds producible quantity
    NoStationConfigured   submission blocked, no active kitchen screen
    InvalidTransition     backward or skipped status change
    NotFound              referenced entity missing
    IndeterminateOutcome  caller timeout expired, re-query before assuming anything
    TransportError        change-feed transport failure, handled inside the relay
"""
from typing import Any, Dict, Optional


class KitchenFlowError(Exception):
    """Base class for all domain errors."""

    kind: str = "error"
    status_code: int = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "detail": self.message, **self.details}


class InsufficientStock(KitchenFlowError):
    kind = "insufficient_stock"
    status_code = 409

    def __init__(self, requested: int, available: int, dish_id: Any = None, variant_id: Any = None):
        super().__init__(
            f"Requested {requested} but only {available} can be prepared with current stock",
            requested=requested,
            available=available,
            dish_id=str(dish_id) if dish_id else None,
            variant_id=str(variant_id) if variant_id else None,
        )
        self.requested = requested
        self.available = available


class NoStationConfigured(KitchenFlowError):
    kind = "no_station_configured"
    status_code = 409

    def __init__(self, message: str = "No active kitchen screen is configured; the ticket has no destination"):
        super().__init__(message)


class InvalidTransition(KitchenFlowError):
    kind = "invalid_transition"
    status_code = 409

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message, current=current, target=target)
        self.current = current
        self.target = target


class NotFound(KitchenFlowError):
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} not found", entity=entity, id=str(entity_id))
        self.entity = entity
        self.entity_id = entity_id


class IndeterminateOutcome(KitchenFlowError):
    kind = "indeterminate"
    status_code = 504

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"{operation} did not finish within {timeout}s; re-query before assuming success or failure",
            operation=operation,
            timeout=timeout,
        )


class TransportError(KitchenFlowError):
    """Change-feed transport failure. ``reason`` is ``channel_error`` or ``timeout``."""

    kind = "transport_error"
    status_code = 503

    CHANNEL_ERROR = "channel_error"
    TIMEOUT = "timeout"

    def __init__(self, message: str, reason: str = CHANNEL_ERROR):
        super().__init__(message, reason=reason)
        self.reason = reason
