from fastapi import APIRouter

from kitchenflow.api.v1.endpoints import (
    # Waiter side
    orders,
    availability,
    # Kitchen side
    comandas,
    kitchen_screens,
    # Realtime
    changes,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Orders ====================
api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["Orders"]
)

# ==================== Availability ====================
api_router.include_router(
    availability.router,
    prefix="/availability",
    tags=["Availability"]
)

# ==================== Comandas (Kitchen Tickets) ====================
api_router.include_router(
    comandas.router,
    prefix="/comandas",
    tags=["Comandas"]
)

# ==================== Kitchen Screens ====================
api_router.include_router(
    kitchen_screens.router,
    prefix="/kitchen-screens",
    tags=["Kitchen Screens"]
)

# ==================== Change Feed ====================
api_router.include_router(
    changes.router,
    prefix="/changes",
    tags=["Changes"]
)
