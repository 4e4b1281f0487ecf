"""API layer module.

Contains FastAPI routers, request/response schemas and error handlers.
"""

from multistore.api.health import router as health_router
from multistore.api.orders import router as orders_router
from multistore.api.payments import router as payments_router

__all__ = [
    "health_router",
    "orders_router",
    "payments_router",
]
