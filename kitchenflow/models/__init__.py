from kitchenflow.models.inventory import InventoryItem, Batch, StockConsumption
from kitchenflow.models.menu import DishCategory, Dish, DishVariant, Recipe
from kitchenflow.models.employee import Employee, EmployeeRole
from kitchenflow.models.order import Order, OrderItem, ItemStatus
from kitchenflow.models.comanda import Comanda, ComandaItem
from kitchenflow.models.kitchen import KitchenScreen, ScreenDishAssignment

__all__ = [
    # Inventory
    "InventoryItem",
    "Batch",
    "StockConsumption",
    # Menu
    "DishCategory",
    "Dish",
    "DishVariant",
    "Recipe",
    # Staff
    "Employee",
    "EmployeeRole",
    # Orders
    "Order",
    "OrderItem",
    "ItemStatus",
    # Kitchen tickets
    "Comanda",
    "ComandaItem",
    # Stations
    "KitchenScreen",
    "ScreenDishAssignment",
]
