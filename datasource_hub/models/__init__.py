"""
Data models for the Datasource Hub.

Contains the Pydantic models shared by plugins, the registry and the API.
"""

from .contracts import (
    PluginCategory,
    PropertyType,
    SchemaProperty,
    ConfigurationSchema,
    PluginCapabilities,
    PluginDescriptor,
    ColumnInfo,
    TableInfo,
    ViewInfo,
    SchemaInfo,
    QueryResult,
    ValidationResult,
    ConnectionTestResult,
    RegistryStatistics,
    PluginLoadStatus,
)

__all__ = [
    "PluginCategory",
    "PropertyType",
    "SchemaProperty",
    "ConfigurationSchema",
    "PluginCapabilities",
    "PluginDescriptor",
    "ColumnInfo",
    "TableInfo",
    "ViewInfo",
    "SchemaInfo",
    "QueryResult",
    "ValidationResult",
    "ConnectionTestResult",
    "RegistryStatistics",
    "PluginLoadStatus",
]
