"""
Pydantic schemas for API request/response models.

These models define the contract for the REST API and ensure proper
validation and serialization of data.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from datasource_hub.models import PluginDescriptor


class PluginSummary(BaseModel):
    """Catalog entry for plugin listings."""
    name: str
    display_name: str
    category: str
    version: str
    description: Optional[str] = None

    @classmethod
    def from_descriptor(cls, descriptor: PluginDescriptor) -> "PluginSummary":
        return cls(
            name=descriptor.name,
            display_name=descriptor.display_name,
            category=descriptor.category.value,
            version=descriptor.version,
            description=descriptor.description,
        )


class PluginListResponse(BaseModel):
    """Response model for plugin listings."""
    plugins: List[PluginSummary] = []
    total: int = 0


class CategoryListResponse(BaseModel):
    categories: List[str] = []


class ConfigurationRequest(BaseModel):
    """Connection configuration submitted for validation or testing."""
    config: Dict[str, Any] = Field(
        default_factory=dict,
        description="Connection properties matching the plugin's config schema"
    )


class HealthCheck(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime
    version: str
    uptime_seconds: float
    plugins_loaded: int = 0


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime
