from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from kitchenflow.config import settings
from kitchenflow.api.v1.router import api_router
from kitchenflow.core.exceptions import KitchenFlowError
from kitchenflow.core.logging import setup_logging
from kitchenflow.database import init_db, async_session_factory
from kitchenflow.jobs.scheduler import start_scheduler, shutdown_scheduler
from kitchenflow.services.change_feed import create_change_feed

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Configure logging
    - Create tables if missing
    - Open the change feed (Redis pub/sub or in-process)
    - Start background scheduler
    """
    # Startup
    setup_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()

    app.state.change_feed = create_change_feed(settings)

    if settings.SCHEDULER_ENABLED:
        start_scheduler(app.state.change_feed)

    yield

    # Shutdown
    shutdown_scheduler()
    await app.state.change_feed.close()
    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Orders", "description": "Waiter orders: items, stock-gated additions and submission to the kitchen"},
    {"name": "Availability", "description": "Producible portions per dish from current recipes and batches"},
    {"name": "Comandas", "description": "Kitchen tickets and per-item status (pending, ready, served)"},
    {"name": "Kitchen Screens", "description": "Stations and the dishes each one prepares"},
    {"name": "Changes", "description": "Realtime row-change feed over WebSocket"},
]

FULL_API_DESCRIPTION = """
## Kitchenflow API

Order-to-kitchen flow for restaurants.

| Module | Description |
|--------|-------------|
| **Orders** | Waiters build an order; items are checked against stock |
| **Comandas** | A submitted order becomes a ticket the kitchen advances item by item |
| **Kitchen Screens** | Each station sees only the dishes assigned to it |
| **Availability** | How many portions of each dish can still be prepared |
| **Changes** | Clients subscribe to row changes and re-fetch what they show |

### Identity

Mutating order endpoints require an `X-Employee-Id` header with an active employee id.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Bad Request - Validation failed |
| 401 | Missing or unknown employee |
| 404 | Not Found - Resource doesn't exist |
| 409 | insufficient_stock, invalid_transition, no_station_configured |
| 503 | Change feed unavailable |
| 504 | indeterminate - operation timed out, may be partially applied |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=FULL_API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(KitchenFlowError)
async def domain_exception_handler(request: Request, exc: KitchenFlowError):
    """Domain errors carry their own status code and a machine-readable kind."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Global exception handler for anything unexpected
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")

    error_detail = {
        "error": str(exc),
        "type": type(exc).__name__,
        "path": str(request.url.path),
        "method": request.method,
    }
    if settings.DEBUG:
        error_detail["traceback"] = traceback.format_exc()

    response = JSONResponse(
        status_code=500,
        content=error_detail
    )

    # Add CORS headers if origin is allowed
    origin = request.headers.get("origin", "")
    if origin in settings.cors_origins_list or "*" in settings.cors_origins_list:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"

    return response


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown",
            "change_feed": type(getattr(app.state, "change_feed", None)).__name__,
        }
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
