"""
Storefront service
Product catalog, order intake and the admin endpoints behind them.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
import os

from storefront import __version__
from storefront.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from storefront.core_settings import Settings, get_settings
from storefront.application.service import StorageService
from storefront.api.routes import admin_router, orders_router, products_router

SERVICE_NAME = "storefront"
SERVICE_VERSION = os.getenv("SERVICE_VERSION", __version__)

logger = get_logger(__name__)

def create_app(settings: Optional[Settings] = None, storage: Optional[StorageService] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(service_name=SERVICE_NAME, level=settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")
        Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
        owned = app.state.storage is None
        if owned:
            app.state.storage = StorageService.from_settings(settings)
        logger.info(
            f"{SERVICE_NAME} started",
            extra={'extra_fields': {'remote_configured': app.state.storage.is_remote_configured()}}
        )

        yield

        logger.info(f"Shutting down {SERVICE_NAME}")
        if owned:
            app.state.storage.close()
            app.state.storage = None

    app = FastAPI(
        title=SERVICE_NAME,
        description="Storefront catalog and order intake",
        version=SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url=None,
        openapi_url="/api/openapi.json",
    )
    app.state.settings = settings
    app.state.storage = storage

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(ServiceHealth(SERVICE_NAME, SERVICE_VERSION).create_health_router())
    app.include_router(admin_router)
    app.include_router(products_router)
    app.include_router(orders_router)

    app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name="uploads")

    return app

app = create_app()
