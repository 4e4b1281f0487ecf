"""Multistore API main application module.

This module initializes the FastAPI application and configures
core middleware, routers, exception handlers and startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from multistore.api.errors import register_exception_handlers
from multistore.api.health import router as health_router
from multistore.api.middleware import setup_middleware
from multistore.api.orders import router as orders_router
from multistore.api.payments import router as payments_router
from multistore.application.concurrency import get_task_runner
from multistore.infrastructure.config import settings
from multistore.infrastructure.database import create_tables, dispose_engine
from multistore.infrastructure.logging_config import configure_logging
from multistore.infrastructure.wallet_gateway import close_wallet_gateway

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    configure_logging()
    logger.info(
        "Starting Multistore API",
        version=settings.api_version,
        debug=settings.debug,
        storage=settings.storage_backend,
        wallet_gateway=settings.wallet_gateway_mode,
    )

    if settings.storage_backend == "sqlalchemy":
        await create_tables()

    yield

    logger.info("Shutting down Multistore API")
    await get_task_runner().shutdown()
    await close_wallet_gateway()
    if settings.storage_backend == "sqlalchemy":
        await dispose_engine()


app = FastAPI(
    title="Multistore API",
    description="Order and payment lifecycle core of a multi-store e-commerce backend",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup custom middleware (request ID, API key auth, error handling)
setup_middleware(app)

register_exception_handlers(app)

# Include routers
app.include_router(health_router, tags=["Health"])
app.include_router(orders_router)
app.include_router(payments_router)
