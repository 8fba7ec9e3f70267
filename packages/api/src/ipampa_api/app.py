"""FastAPI application factory."""

from __future__ import annotations

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ipampa_shared.config import settings
from ipampa_pipeline.utils.logging import configure_logging

from ipampa_api.middleware.logging import LoggingMiddleware
from ipampa_api.routers.health import router as health_router
from ipampa_api.routers.v1 import v1_router

logger = structlog.get_logger()


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="IPAMPA Mirror API",
        description="INSEE agricultural input price indices (IPAMPA), mirrored and exported",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

    app.add_middleware(LoggingMiddleware)

    # Routers
    app.include_router(health_router)
    app.include_router(v1_router)

    logger.info("app_created", cors_origins=settings.cors_origins_list)
    return app


def run() -> None:
    """Serve the API with uvicorn on settings.api_host:settings.api_port."""
    import uvicorn

    uvicorn.run(
        "ipampa_api.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )
