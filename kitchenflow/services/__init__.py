# Services module
from kitchenflow.services.availability_service import AvailabilityService
from kitchenflow.services.order_service import OrderService
from kitchenflow.services.comanda_service import ComandaService
from kitchenflow.services.station_router import KitchenScreenService, StationRouter

# Change feed
from kitchenflow.services.change_feed import ChangeFeedBackend, InMemoryChangeFeed, RedisChangeFeed
from kitchenflow.services.change_relay import ChangeFeedRelay

__all__ = [
    "AvailabilityService",
    "OrderService",
    "ComandaService",
    "KitchenScreenService",
    "StationRouter",
    "ChangeFeedBackend",
    "InMemoryChangeFeed",
    "RedisChangeFeed",
    "ChangeFeedRelay",
]
