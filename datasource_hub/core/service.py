"""
Data source service facade.

The single entry point an API tier uses: catalog calls are synchronous and
answered from the registry, lifecycle and data calls are delegated to the
plugin that owns the connection.
"""

from collections.abc import Mapping
from typing import Any, List, Optional, Union

import structlog

from datasource_hub.adapters.connection import Connection
from datasource_hub.adapters.normalization import Stopwatch
from datasource_hub.adapters.registry import PluginRegistry
from datasource_hub.exceptions import ConfigurationValidationError
from datasource_hub.models import (
    ColumnInfo,
    ConfigurationSchema,
    ConnectionTestResult,
    PluginCategory,
    PluginDescriptor,
    QueryResult,
    SchemaInfo,
    TableInfo,
    ValidationResult,
)

from .redaction import redact_config

logger = structlog.get_logger(__name__)


class DataSourceService:
    """Catalog, lifecycle and data calls over a plugin registry."""

    def __init__(self, registry: PluginRegistry):
        self.registry = registry

    # Catalog calls

    def list_plugins(self) -> List[PluginDescriptor]:
        return self.registry.get_descriptors()

    def list_plugins_by_category(self, category: Union[PluginCategory, str]) -> List[PluginDescriptor]:
        return [
            self.registry.get_descriptor(plugin.name)
            for plugin in self.registry.get_plugins_by_category(category)
        ]

    def list_plugins_by_capability(self, flag: str) -> List[PluginDescriptor]:
        return [
            self.registry.get_descriptor(plugin.name)
            for plugin in self.registry.get_plugins_by_capability(flag)
        ]

    def get_plugin_config_schema(self, name: str) -> ConfigurationSchema:
        return self.registry.get_descriptor(name).config_schema

    def search_plugins(self, term: str) -> List[PluginDescriptor]:
        return [self.registry.get_descriptor(plugin.name) for plugin in self.registry.search_plugins(term)]

    def validate_configuration(self, name: str, config: Mapping) -> ValidationResult:
        self.registry.require_plugin(name)
        return self.registry.validate_plugin_configuration(name, config)

    # Lifecycle calls

    async def connect(self, name: str, config: Mapping) -> Connection:
        """
        Validate a configuration and open a connection with it.

        Raises:
            PluginNotFound: If no plugin is registered under ``name``
            ConfigurationValidationError: Before any I/O, if the config is invalid
            DataSourceConnectionError: If the backend cannot be reached
        """
        plugin = self.registry.require_plugin(name)
        validation = self._validate_or_raise(name, config)
        if validation.warnings:
            logger.warning("Configuration warnings", plugin=name, warnings=validation.warnings)
        return await plugin.connect(config)

    async def test_connection(self, name: str, config: Mapping) -> ConnectionTestResult:
        plugin = self.registry.require_plugin(name)
        watch = Stopwatch()

        validation = self.registry.validate_plugin_configuration(name, config)
        if not validation.valid:
            return ConnectionTestResult(
                success=False,
                message="; ".join(validation.errors),
                error_code="CONFIGURATION_INVALID",
                response_time_ms=watch.elapsed_ms,
            )

        success = await plugin.test_connection(config)
        result = ConnectionTestResult(
            success=success,
            message="Connection successful" if success else "Connection test failed",
            error_code=None if success else "CONNECTION_FAILED",
            response_time_ms=watch.elapsed_ms,
        )
        logger.info(
            "Tested connection",
            plugin=name,
            success=success,
            response_time_ms=result.response_time_ms,
        )
        return result

    async def disconnect(self, connection: Connection) -> None:
        plugin = self.registry.get_plugin(connection.plugin_name)
        if plugin is not None:
            await plugin.disconnect(connection)
            return

        # Owner was unregistered; release the handle directly so nothing leaks
        try:
            await connection.handle.release()
        finally:
            connection.mark_disconnected()
        logger.warning(
            "Released connection of unregistered plugin",
            plugin=connection.plugin_name,
            connection_id=connection.id,
        )

    # Data calls

    async def execute_query(self, connection: Connection, query: Any, params: Any = None) -> QueryResult:
        plugin = self.registry.require_plugin(connection.plugin_name)
        result = await plugin.execute_query(connection, query, params)
        if isinstance(result, Mapping):
            result = QueryResult(**result)
        return result

    async def get_schema(self, connection: Connection) -> SchemaInfo:
        plugin = self.registry.require_plugin(connection.plugin_name)
        return await plugin.get_schema(connection)

    async def get_tables(self, connection: Connection, database: Optional[str] = None) -> List[TableInfo]:
        plugin = self.registry.require_plugin(connection.plugin_name)
        return await plugin.get_tables(connection, database)

    async def get_columns(self, connection: Connection, table: str) -> List[ColumnInfo]:
        plugin = self.registry.require_plugin(connection.plugin_name)
        return await plugin.get_columns(connection, table)

    def _validate_or_raise(self, name: str, config: Mapping) -> ValidationResult:
        validation = self.registry.validate_plugin_configuration(name, config)
        if not validation.valid:
            descriptor = self.registry.get_descriptor(name)
            logger.warning(
                "Rejected invalid configuration",
                plugin=name,
                errors=validation.errors,
                config=redact_config(config, descriptor.config_schema.secret_keys),
            )
            raise ConfigurationValidationError(name, validation.errors, validation.warnings)
        return validation
