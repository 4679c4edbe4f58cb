from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
import logging

import config

# Import all routers
from routers import (
    orders_router,
    supplier_orders_router,
    capacity_router,
    batches_router,
    stages_router,
    pricing_router,
    webhooks_router,
    sync_queue_router,
    notifications_router
)
from services.errors import FulfillmentError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(title="Sleek Fulfillment API", version="1.0.0")

# Create main API router with /api prefix
api_router = APIRouter(prefix="/api")

# Include all routers
api_router.include_router(orders_router)
api_router.include_router(supplier_orders_router)
api_router.include_router(capacity_router)
api_router.include_router(batches_router)
api_router.include_router(stages_router)
api_router.include_router(pricing_router)
api_router.include_router(webhooks_router)
api_router.include_router(sync_queue_router)
api_router.include_router(notifications_router)


# Root endpoint
@api_router.get("/")
async def root():
    return {"message": "Sleek Fulfillment API", "status": "running"}


@api_router.get("/scheduler/status")
async def scheduler_status():
    from services.scheduler import get_scheduler_status
    return get_scheduler_status()


# Include the main router
app.include_router(api_router)


@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.code})


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    from database import create_indexes
    await create_indexes()
    if config.SCHEDULER_ENABLED:
        from services.scheduler import start_scheduler
        start_scheduler()


@app.on_event("shutdown")
async def shutdown():
    from database import client
    from dependencies import get_services
    from services.scheduler import stop_scheduler
    stop_scheduler()
    await get_services().bus.drain()
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
