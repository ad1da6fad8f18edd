"""
Main FastAPI application for the Datasource Hub service.

Sets up the web server, middleware, routes, and error handling.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import time

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from datasource_hub.adapters.registry import PluginRegistry, create_registry
from datasource_hub.core.service import DataSourceService
from datasource_hub.exceptions import (
    ConfigurationValidationError,
    DataSourceConnectionError,
    DataSourceHubError,
    InvalidPluginInterface,
    PluginNotFound,
    QueryExecutionError,
)
from datasource_hub.logging_setup import configure_logging
from datasource_hub.schemas import ErrorResponse
from datasource_hub.settings import settings

logger = structlog.get_logger(__name__)

# Checked most specific first
_STATUS_BY_ERROR = (
    (PluginNotFound, status.HTTP_404_NOT_FOUND),
    (ConfigurationValidationError, 422),
    (InvalidPluginInterface, 422),
    (DataSourceConnectionError, status.HTTP_502_BAD_GATEWAY),
    (QueryExecutionError, status.HTTP_400_BAD_REQUEST),
)


def _error_response(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=message,
            details=details,
            timestamp=datetime.now(timezone.utc),
        ).model_dump(mode="json"),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    configure_logging(settings)
    app.state.started_at = time.time()
    logger.info("Starting Datasource Hub service", version=settings.app_version)

    if app.state.load_defaults:
        app.state.registry.initialize()

    logger.info("Plugin catalog ready", plugins=len(app.state.registry))
    yield
    logger.info("Shutting down Datasource Hub service")


def create_app(registry: Optional[PluginRegistry] = None, load_defaults: bool = True) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        registry: Plugin registry to serve; a fresh one when omitted
        load_defaults: Register the default plugin catalog on startup
    """
    app = FastAPI(
        title="Datasource Hub API",
        description="Plugin catalog and connection checks for heterogeneous data sources",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    registry = registry if registry is not None else create_registry(settings, initialize=False)
    app.state.registry = registry
    app.state.service = DataSourceService(registry)
    app.state.load_defaults = load_defaults
    app.state.started_at = time.time()

    allow_origins = settings.allowed_origins if not settings.debug else ["*"]
    allow_credentials = False if allow_origins == ["*"] else True
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DataSourceHubError)
    async def datasource_exception_handler(request, exc: DataSourceHubError):
        status_code = next(
            (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        logger.warning(
            "Request failed",
            path=request.url.path,
            method=request.method,
            error_code=exc.error_code,
            status_code=status_code,
        )
        return _error_response(status_code, exc.error_code.lower(), exc.message, exc.context)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True
        )
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "internal_server_error",
            "An unexpected error occurred",
        )

    # Include API routes
    from datasource_hub.api.routes import health, plugins

    app.include_router(
        health.router,
        prefix=settings.api_prefix,
        tags=["health"]
    )

    app.include_router(
        plugins.router,
        prefix=settings.api_prefix,
        tags=["plugins"]
    )

    return app


# Create the app instance
app = create_app()
