"""
Plugin catalog endpoints.

Listing, search, manifests and config schemas come straight from the
registry; validation and connection tests go through the service so they
follow the same rules as real connections.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
import structlog

from datasource_hub.core.service import DataSourceService
from datasource_hub.models import ConnectionTestResult, PluginLoadStatus, RegistryStatistics, ValidationResult
from datasource_hub.schemas import (
    CategoryListResponse,
    ConfigurationRequest,
    PluginListResponse,
    PluginSummary,
)

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/plugins")


def get_service(request: Request) -> DataSourceService:
    return request.app.state.service


@router.get("", response_model=PluginListResponse)
async def list_plugins(
    category: Optional[str] = Query(None, description="Only plugins in this category"),
    search: Optional[str] = Query(None, description="Case-insensitive search term"),
    service: DataSourceService = Depends(get_service),
) -> PluginListResponse:
    """List registered plugins, optionally filtered by category and search term."""
    if search:
        descriptors = service.search_plugins(search)
        if category:
            descriptors = [d for d in descriptors if d.category.value == category]
    elif category:
        descriptors = service.list_plugins_by_category(category)
    else:
        descriptors = service.list_plugins()

    plugins = sorted((PluginSummary.from_descriptor(d) for d in descriptors), key=lambda p: p.name)
    return PluginListResponse(plugins=plugins, total=len(plugins))


@router.get("/categories", response_model=CategoryListResponse)
async def list_categories(service: DataSourceService = Depends(get_service)) -> CategoryListResponse:
    return CategoryListResponse(categories=service.registry.get_categories())


@router.get("/statistics", response_model=RegistryStatistics)
async def plugin_statistics(service: DataSourceService = Depends(get_service)) -> RegistryStatistics:
    return service.registry.get_statistics()


@router.get("/load-status", response_model=Dict[str, PluginLoadStatus])
async def plugin_load_status(service: DataSourceService = Depends(get_service)) -> Dict[str, PluginLoadStatus]:
    """Why each default plugin was or was not loaded."""
    return service.registry.load_status


@router.get("/{name}")
async def get_plugin(name: str, service: DataSourceService = Depends(get_service)) -> Dict[str, Any]:
    """Public manifest of one plugin; secret defaults are never included."""
    return service.registry.get_descriptor(name).manifest()


@router.get("/{name}/config-schema")
async def get_config_schema(name: str, service: DataSourceService = Depends(get_service)) -> Dict[str, Any]:
    return service.get_plugin_config_schema(name).public_view()


@router.post("/{name}/validate", response_model=ValidationResult)
async def validate_configuration(
    name: str,
    body: ConfigurationRequest,
    service: DataSourceService = Depends(get_service),
) -> ValidationResult:
    return service.validate_configuration(name, body.config)


@router.post("/{name}/test-connection", response_model=ConnectionTestResult)
async def test_connection(
    name: str,
    body: ConfigurationRequest,
    service: DataSourceService = Depends(get_service),
) -> ConnectionTestResult:
    """Open, probe and close a connection; the configuration is not stored."""
    result = await service.test_connection(name, body.config)
    logger.info("Connection test requested", plugin=name, success=result.success)
    return result
