"""
Plugin registry for managing data source plugins.

Provides an explicit registry object (no module-level singleton) holding
plugin implementations and their descriptors, plus the default catalog
that is registered on ``initialize()``.
"""

import importlib
import importlib.util
import inspect
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog
from pydantic import ValidationError

from datasource_hub.exceptions import InvalidPluginInterface, PluginNotFound
from datasource_hub.models import (
    ConfigurationSchema,
    PluginCategory,
    PluginDescriptor,
    PluginLoadStatus,
    RegistryStatistics,
    ValidationResult,
)
from datasource_hub.settings import Settings, settings as default_settings

from . import validator
from .base import REQUIRED_FIELDS, REQUIRED_METHODS, DataSourcePlugin

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PluginSpec:
    """Where a default plugin lives and which driver modules it needs."""
    target: str
    dependencies: Tuple[str, ...] = ()


# Default catalog; optional entries are switched on through settings
DEFAULT_PLUGINS: Dict[str, PluginSpec] = {
    "postgres": PluginSpec("datasource_hub.adapters.sqlalchemy_connector:PostgresPlugin", ("psycopg2",)),
    "mysql": PluginSpec("datasource_hub.adapters.sqlalchemy_connector:MySQLPlugin", ("pymysql",)),
    "mariadb": PluginSpec("datasource_hub.adapters.sqlalchemy_connector:MariaDBPlugin", ("pymysql",)),
    "sqlite": PluginSpec("datasource_hub.adapters.sqlalchemy_connector:SQLitePlugin", ("sqlite3",)),
    "mssql": PluginSpec("datasource_hub.adapters.sqlalchemy_connector:SQLServerPlugin", ("pyodbc",)),
    "oracle": PluginSpec("datasource_hub.adapters.sqlalchemy_connector:OraclePlugin", ("oracledb",)),
    "snowflake": PluginSpec("datasource_hub.adapters.sqlalchemy_connector:SnowflakePlugin", ("snowflake.sqlalchemy",)),
    "s3": PluginSpec("datasource_hub.adapters.storage:S3Plugin", ("boto3",)),
    "athena": PluginSpec("datasource_hub.adapters.athena:AthenaPlugin", ("boto3",)),
    "delta_table_aws": PluginSpec("datasource_hub.adapters.delta:DeltaTableAWSPlugin", ("boto3",)),
}


def _module_available(module: str) -> bool:
    try:
        return importlib.util.find_spec(module) is not None
    except (ImportError, ValueError):
        # find_spec imports parent packages; a missing parent means missing module
        return False


def check_interface(plugin: Any) -> List[str]:
    """Return every way ``plugin`` falls short of the plugin contract."""
    if inspect.isclass(plugin):
        return [f"Expected a plugin instance, got the class {plugin.__name__}"]

    problems: List[str] = []

    for field in REQUIRED_FIELDS:
        value = getattr(plugin, field, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            problems.append(f"Missing required field: {field}")

    category = getattr(plugin, "category", None)
    if category is not None:
        try:
            PluginCategory(category)
        except ValueError:
            problems.append(f"Invalid category: {category!r}")

    schema = getattr(plugin, "config_schema", None)
    if schema is not None and not isinstance(schema, (ConfigurationSchema, Mapping)):
        problems.append("config_schema must be a ConfigurationSchema")

    for method in REQUIRED_METHODS:
        fn = getattr(plugin, method, None)
        if fn is None or not callable(fn):
            problems.append(f"Missing required method: {method}")
        elif not inspect.iscoroutinefunction(fn):
            problems.append(f"Method {method} must be a coroutine function")

    return problems


def build_descriptor(plugin: Any) -> PluginDescriptor:
    """Snapshot a plugin's descriptor attributes into an immutable model."""
    schema = plugin.config_schema
    if isinstance(schema, Mapping):
        schema = ConfigurationSchema.model_validate(dict(schema))
    return PluginDescriptor(
        name=plugin.name,
        display_name=plugin.display_name,
        category=PluginCategory(plugin.category),
        version=plugin.version,
        description=getattr(plugin, "description", None),
        config_schema=schema,
        capabilities=getattr(plugin, "capabilities", None),
        author=getattr(plugin, "author", None),
        license=getattr(plugin, "license", None),
    )


class PluginRegistry:
    """
    Catalog of data source plugin implementations.

    The registry never holds live connections; those belong to whoever
    called ``connect()``.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or default_settings
        self._plugins: Dict[str, DataSourcePlugin] = {}
        self._descriptors: Dict[str, PluginDescriptor] = {}
        self._initialized = False
        self._load_status: Dict[str, PluginLoadStatus] = {}

    def __len__(self) -> int:
        return len(self._plugins)

    def __contains__(self, name: object) -> bool:
        return name in self._plugins

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def load_status(self) -> Dict[str, PluginLoadStatus]:
        return dict(self._load_status)

    def register_plugin(self, plugin: Any) -> PluginDescriptor:
        """
        Register a plugin implementation.

        Args:
            plugin: Object implementing the DataSourcePlugin contract

        Returns:
            The plugin's descriptor

        Raises:
            InvalidPluginInterface: If a required field or method is missing
        """
        name = getattr(plugin, "name", None)
        problems = check_interface(plugin)

        descriptor = None
        if not problems:
            try:
                descriptor = build_descriptor(plugin)
            except ValidationError as e:
                problems.extend(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())

        if problems:
            logger.error("Rejected plugin registration", plugin=name, problems=problems)
            raise InvalidPluginInterface(
                f"Plugin {name or type(plugin).__name__} does not implement the plugin contract",
                plugin_name=name,
                problems=problems,
            )

        if descriptor.name in self._plugins:
            logger.warning(
                "Overwriting registered plugin",
                plugin=descriptor.name,
                previous_version=self._descriptors[descriptor.name].version,
                version=descriptor.version,
            )

        self._plugins[descriptor.name] = plugin
        self._descriptors[descriptor.name] = descriptor
        logger.info(
            "Registered plugin",
            plugin=descriptor.name,
            category=descriptor.category.value,
            version=descriptor.version,
            class_name=type(plugin).__name__,
        )
        return descriptor

    def unregister_plugin(self, name: str) -> bool:
        removed = self._plugins.pop(name, None) is not None
        self._descriptors.pop(name, None)
        if removed:
            logger.info("Unregistered plugin", plugin=name)
        return removed

    def get_plugin(self, name: str) -> Optional[DataSourcePlugin]:
        return self._plugins.get(name)

    def require_plugin(self, name: str) -> DataSourcePlugin:
        plugin = self._plugins.get(name)
        if plugin is None:
            raise PluginNotFound(name, available=list(self._plugins))
        return plugin

    def get_descriptor(self, name: str) -> PluginDescriptor:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise PluginNotFound(name, available=list(self._plugins))
        return descriptor

    def get_all_plugins(self) -> List[DataSourcePlugin]:
        return list(self._plugins.values())

    def get_descriptors(self) -> List[PluginDescriptor]:
        return list(self._descriptors.values())

    def get_plugins_by_category(self, category: Union[PluginCategory, str]) -> List[DataSourcePlugin]:
        try:
            category = PluginCategory(category)
        except ValueError:
            return []
        return [
            self._plugins[name]
            for name, descriptor in self._descriptors.items()
            if descriptor.category == category
        ]

    def get_plugins_by_capability(self, flag: str) -> List[DataSourcePlugin]:
        """Plugins whose capabilities set ``flag`` (e.g. ``supports_streaming``) to True."""
        return [
            self._plugins[name]
            for name, descriptor in self._descriptors.items()
            if descriptor.capabilities is not None and getattr(descriptor.capabilities, flag, None) is True
        ]

    def get_categories(self) -> List[str]:
        return sorted({descriptor.category.value for descriptor in self._descriptors.values()})

    def search_plugins(self, term: str) -> List[DataSourcePlugin]:
        """Case-insensitive substring match over name, display name and description."""
        needle = (term or "").lower()
        matches = []
        for name, descriptor in self._descriptors.items():
            haystack = (descriptor.name, descriptor.display_name, descriptor.description or "")
            if any(needle in text.lower() for text in haystack):
                matches.append(self._plugins[name])
        return matches

    def get_statistics(self) -> RegistryStatistics:
        by_category: Dict[str, int] = {}
        for descriptor in self._descriptors.values():
            key = descriptor.category.value
            by_category[key] = by_category.get(key, 0) + 1
        return RegistryStatistics(
            total=len(self._plugins),
            by_category=by_category,
            categories=sorted(by_category),
            plugin_names=sorted(self._plugins),
        )

    def get_manifests(self) -> List[Dict[str, Any]]:
        return [descriptor.manifest() for descriptor in self._descriptors.values()]

    def validate_plugin_configuration(self, name: str, config: Mapping) -> ValidationResult:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            return ValidationResult(valid=False, errors=[f"Plugin '{name}' not found"])
        return validator.validate(descriptor.config_schema, config)

    def initialize(self) -> None:
        """Register the default catalog once."""
        if self._initialized:
            return
        self._load_status = load_default_plugins(self, self._settings)
        self._initialized = True


class ResettablePluginRegistry(PluginRegistry):
    """Registry with administrative reset operations for test isolation."""

    def clear(self) -> None:
        self._plugins.clear()
        self._descriptors.clear()
        self._load_status = {}
        self._initialized = False
        logger.debug("Cleared plugin registry")

    def reinitialize(self) -> None:
        self.clear()
        self.initialize()


def create_registry(settings: Optional[Settings] = None, initialize: bool = True) -> PluginRegistry:
    registry = PluginRegistry(settings)
    if initialize:
        registry.initialize()
    return registry


def create_test_registry(settings: Optional[Settings] = None, initialize: bool = False) -> ResettablePluginRegistry:
    """Isolated registry for tests; empty unless ``initialize`` is set."""
    registry = ResettablePluginRegistry(settings)
    if initialize:
        registry.initialize()
    return registry


def get_plugin_statuses(settings: Optional[Settings] = None) -> Dict[str, PluginLoadStatus]:
    """Enable flag and dependency availability for every default plugin."""
    settings = settings or default_settings
    statuses = {}
    for name, spec in DEFAULT_PLUGINS.items():
        enabled = settings.is_plugin_enabled(name)
        missing = [dep for dep in spec.dependencies if not _module_available(dep)]
        statuses[name] = PluginLoadStatus(
            enabled=enabled,
            dependencies_available=not missing,
            missing=missing,
            should_load=enabled and not missing,
        )
    return statuses


def load_default_plugins(registry: PluginRegistry, settings: Optional[Settings] = None) -> Dict[str, PluginLoadStatus]:
    """
    Import and register every enabled default plugin whose drivers are installed.

    Import or registration failures are recorded in the returned status map
    and logged; they never abort loading of the remaining plugins.
    """
    statuses = get_plugin_statuses(settings)

    for name, status in statuses.items():
        if not status.should_load:
            logger.debug(
                "Skipping default plugin",
                plugin=name,
                enabled=status.enabled,
                missing=status.missing,
            )
            continue

        module_name, _, class_name = DEFAULT_PLUGINS[name].target.partition(":")
        try:
            plugin_cls = getattr(importlib.import_module(module_name), class_name)
            registry.register_plugin(plugin_cls())
            status.loaded = True
        except Exception as e:
            status.error = str(e)
            logger.error("Failed to load default plugin", plugin=name, error=str(e))

    logger.info(
        "Loaded default plugins",
        loaded=sorted(n for n, s in statuses.items() if s.loaded),
        disabled=sorted(n for n, s in statuses.items() if not s.enabled),
        missing_dependencies=sorted(n for n, s in statuses.items() if s.enabled and not s.dependencies_available),
        failed=sorted(n for n, s in statuses.items() if s.error),
    )
    return statuses
