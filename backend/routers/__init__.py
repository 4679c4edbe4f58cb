from routers.orders import router as orders_router
from routers.supplier_orders import router as supplier_orders_router
from routers.capacity import router as capacity_router
from routers.batches import router as batches_router
from routers.stages import router as stages_router
from routers.pricing import router as pricing_router
from routers.webhooks import router as webhooks_router
from routers.sync_queue import router as sync_queue_router
from routers.notifications import router as notifications_router

__all__ = [
    "orders_router",
    "supplier_orders_router",
    "capacity_router",
    "batches_router",
    "stages_router",
    "pricing_router",
    "webhooks_router",
    "sync_queue_router",
    "notifications_router"
]
