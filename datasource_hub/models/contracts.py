"""
Shared data contracts for data source plugins.

These models are the normalization boundary: every plugin describes itself
with a PluginDescriptor and returns QueryResult / SchemaInfo / TableInfo /
ColumnInfo regardless of the backend it talks to.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, validator


class PluginCategory(str, Enum):
    """Families of data sources."""
    RELATIONAL = "relational"
    CLOUD_DATABASES = "cloud_databases"
    STORAGE_SERVICES = "storage_services"
    DATA_LAKES = "data_lakes"


class PropertyType(str, Enum):
    """Value types a configuration property may declare."""
    STRING = "string"
    PASSWORD = "password"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    SELECT = "select"


class SchemaProperty(BaseModel):
    """Declarative description of one connection property."""
    type: PropertyType = Field(..., description="Expected value type")
    title: Optional[str] = Field(None, description="Human-readable label")
    description: Optional[str] = Field(None, description="Help text")
    default: Optional[Any] = Field(None, description="Default value")
    enum: Optional[List[Any]] = Field(None, description="Allowed values")
    minimum: Optional[float] = Field(None, description="Numeric lower bound")
    maximum: Optional[float] = Field(None, description="Numeric upper bound")
    min_length: Optional[int] = Field(None, alias="minLength", description="Minimum string length")
    max_length: Optional[int] = Field(None, alias="maxLength", description="Maximum string length")
    pattern: Optional[str] = Field(None, description="Regular expression a string must match")
    format: Optional[str] = Field(None, description="Presentation hint (password, uri, ...)")

    class Config:
        populate_by_name = True
        use_enum_values = True

    @property
    def is_secret(self) -> bool:
        return self.type == PropertyType.PASSWORD.value or self.format == "password"


class ConfigurationSchema(BaseModel):
    """Connection properties a plugin requires, consumed by the validator and UIs."""
    properties: Dict[str, SchemaProperty] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)
    additional_properties: bool = Field(True, alias="additionalProperties")

    class Config:
        populate_by_name = True

    @property
    def secret_keys(self) -> set:
        return {name for name, prop in self.properties.items() if prop.is_secret}

    def public_view(self) -> Dict[str, Any]:
        """Serializable schema with defaults stripped from secret properties."""
        properties: Dict[str, Any] = {}
        for name, prop in self.properties.items():
            data = prop.model_dump(by_alias=True, exclude_none=True)
            if prop.is_secret:
                data.pop("default", None)
            properties[name] = data
        return {
            "type": "object",
            "properties": properties,
            "required": list(self.required),
            "additionalProperties": self.additional_properties,
        }


class PluginCapabilities(BaseModel):
    """Advisory metadata; the framework does not enforce any of it."""
    supports_bulk_insert: bool = False
    supports_transactions: bool = False
    supports_stored_procedures: bool = False
    supports_streaming: bool = False
    max_concurrent_connections: Optional[int] = Field(None, ge=1)


class PluginDescriptor(BaseModel):
    """Immutable identity of a registered connector."""
    name: str = Field(..., min_length=1, description="Unique registry key")
    display_name: str = Field(..., min_length=1)
    category: PluginCategory
    version: str = Field(..., min_length=1)
    description: Optional[str] = None
    config_schema: ConfigurationSchema
    capabilities: Optional[PluginCapabilities] = None
    author: Optional[str] = None
    license: Optional[str] = None

    class Config:
        frozen = True

    def manifest(self) -> Dict[str, Any]:
        """Public metadata for catalog consumers."""
        return {
            "name": self.name,
            "display_name": self.display_name,
            "category": self.category.value,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "license": self.license,
            "capabilities": self.capabilities.model_dump() if self.capabilities else None,
            "config_schema": self.config_schema.public_view(),
        }


class ColumnInfo(BaseModel):
    """Column metadata using framework type names."""
    name: str
    type: str = Field(default="unknown", description="Normalized type name")
    nullable: bool = True
    default_value: Optional[Any] = None
    is_primary_key: Optional[bool] = None


class TableInfo(BaseModel):
    """Uniform catalog entry for a table, collection, object or view."""
    name: str
    schema_name: Optional[str] = Field(None, description="Schema, database, bucket or namespace")
    type: Literal["table", "view"] = "table"
    columns: Optional[List[ColumnInfo]] = None
    row_count: Optional[int] = None


class ViewInfo(TableInfo):
    type: Literal["table", "view"] = "view"
    definition: Optional[str] = None


class SchemaInfo(BaseModel):
    tables: List[TableInfo] = Field(default_factory=list)
    views: List[ViewInfo] = Field(default_factory=list)


class QueryResult(BaseModel):
    """Backend-agnostic query result."""
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[ColumnInfo] = Field(default_factory=list)
    row_count: int = Field(0, ge=0)
    execution_time_ms: float = Field(0.0, ge=0.0)
    query_id: Optional[str] = None

    @validator("row_count")
    def validate_row_count(cls, v, values):
        rows = values.get("rows") or []
        if rows and v != len(rows):
            raise ValueError(f"row_count {v} does not match {len(rows)} returned rows")
        return v


class ValidationResult(BaseModel):
    """Outcome of validating a configuration against a plugin schema."""
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ConnectionTestResult(BaseModel):
    """Structured outcome of a connection probe."""
    success: bool
    message: str
    error_code: Optional[str] = None
    response_time_ms: Optional[float] = None


class RegistryStatistics(BaseModel):
    total: int
    by_category: Dict[str, int] = Field(default_factory=dict)
    categories: List[str] = Field(default_factory=list)
    plugin_names: List[str] = Field(default_factory=list)


class PluginLoadStatus(BaseModel):
    """Whether a default-catalog plugin was registered, and why not."""
    enabled: bool
    dependencies_available: bool
    missing: List[str] = Field(default_factory=list)
    should_load: bool
    loaded: bool = False
    error: Optional[str] = None
