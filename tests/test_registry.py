"""
Tests for the plugin registry and the default catalog loader.
"""

import pytest
from structlog.testing import capture_logs

from datasource_hub.adapters import registry as registry_module
from datasource_hub.adapters.base import REQUIRED_FIELDS, REQUIRED_METHODS
from datasource_hub.adapters.registry import PluginSpec, create_test_registry, get_plugin_statuses
from datasource_hub.exceptions import InvalidPluginInterface, PluginNotFound
from datasource_hub.models import ConfigurationSchema, PluginCapabilities, PluginCategory, SchemaProperty
from datasource_hub.settings import Settings

from conftest import CountingPlugin, EchoPlugin


class BucketPlugin(EchoPlugin):
    name = "bucket"
    display_name = "Object Bucket"
    category = PluginCategory.STORAGE_SERVICES
    description = "Files in a bucket"
    config_schema = ConfigurationSchema(
        properties={"secret": SchemaProperty(type="password", default="s3cr3t")},
    )


def test_register_and_get(registry, echo_plugin):
    descriptor = registry.register_plugin(echo_plugin)

    assert descriptor.name == "echo"
    assert registry.get_plugin("echo") is echo_plugin
    assert len(registry) == 1
    assert "echo" in registry


@pytest.mark.parametrize("method", REQUIRED_METHODS)
def test_rejects_plugin_missing_a_method(registry, method):
    registry.register_plugin(CountingPlugin())
    plugin = EchoPlugin()
    setattr(plugin, method, None)

    with pytest.raises(InvalidPluginInterface) as exc:
        registry.register_plugin(plugin)

    assert any(method in problem for problem in exc.value.problems)
    assert len(registry) == 1
    assert registry.get_plugin("echo") is None


@pytest.mark.parametrize("field", REQUIRED_FIELDS)
@pytest.mark.parametrize("value", [None, ""])
def test_rejects_plugin_missing_a_field(registry, field, value):
    plugin = EchoPlugin()
    setattr(plugin, field, value)

    with pytest.raises(InvalidPluginInterface):
        registry.register_plugin(plugin)

    assert len(registry) == 0


def test_rejects_synchronous_methods(registry):
    plugin = EchoPlugin()
    plugin.connect = lambda config: None

    with pytest.raises(InvalidPluginInterface) as exc:
        registry.register_plugin(plugin)

    assert "Method connect must be a coroutine function" in exc.value.problems


def test_rejects_unknown_category(registry):
    plugin = EchoPlugin()
    plugin.category = "mainframes"

    with pytest.raises(InvalidPluginInterface) as exc:
        registry.register_plugin(plugin)

    assert exc.value.error_code == "INVALID_PLUGIN_INTERFACE"
    assert len(registry) == 0


def test_rejects_plugin_class_instead_of_instance(registry):
    with pytest.raises(InvalidPluginInterface) as exc:
        registry.register_plugin(CountingPlugin)

    assert exc.value.problems == ["Expected a plugin instance, got the class CountingPlugin"]
    assert len(registry) == 0


class StreamingPlugin(CountingPlugin):
    name = "streaming"
    capabilities = PluginCapabilities(supports_streaming=True, supports_transactions=True, max_concurrent_connections=4)


def test_capability_filtering(registry):
    registry.register_plugin(EchoPlugin())
    registry.register_plugin(CountingPlugin())
    registry.register_plugin(StreamingPlugin())

    assert [p.name for p in registry.get_plugins_by_capability("supports_streaming")] == ["streaming"]
    assert [p.name for p in registry.get_plugins_by_capability("supports_transactions")] == ["streaming"]
    assert registry.get_plugins_by_capability("supports_bulk_insert") == []
    assert registry.get_plugins_by_capability("max_concurrent_connections") == []
    assert registry.get_plugins_by_capability("teleportation") == []


def test_reregistration_overwrites_and_warns(registry):
    first, second = EchoPlugin(), EchoPlugin()
    second.version = "2.0.0"
    registry.register_plugin(first)

    with capture_logs() as logs:
        registry.register_plugin(second)

    assert registry.get_plugin("echo") is second
    assert registry.get_descriptor("echo").version == "2.0.0"
    assert len(registry) == 1
    assert any(
        log["event"] == "Overwriting registered plugin" and log["log_level"] == "warning"
        for log in logs
    )


def test_category_filtering(registry):
    registry.register_plugin(EchoPlugin())
    registry.register_plugin(CountingPlugin())
    registry.register_plugin(BucketPlugin())
    registry.register_plugin(CountingPlugin())

    relational = registry.get_plugins_by_category("relational")

    assert sorted(p.name for p in relational) == ["counting", "echo"]
    assert [p.name for p in registry.get_plugins_by_category(PluginCategory.STORAGE_SERVICES)] == ["bucket"]
    assert registry.get_plugins_by_category("data_lakes") == []
    assert registry.get_plugins_by_category("not-a-category") == []


def test_categories_are_sorted_and_unique(registry):
    for plugin in (BucketPlugin(), EchoPlugin(), CountingPlugin()):
        registry.register_plugin(plugin)

    assert registry.get_categories() == ["relational", "storage_services"]


def test_search_is_case_insensitive_over_name_display_name_and_description(registry):
    for plugin in (BucketPlugin(), EchoPlugin(), CountingPlugin()):
        registry.register_plugin(plugin)

    assert [p.name for p in registry.search_plugins("ECHO")] == ["echo"]
    assert [p.name for p in registry.search_plugins("object")] == ["bucket"]
    assert [p.name for p in registry.search_plugins("fake relational")] == ["counting"]
    assert registry.search_plugins("nothing like this") == []


def test_statistics(registry):
    for plugin in (BucketPlugin(), EchoPlugin(), CountingPlugin()):
        registry.register_plugin(plugin)

    stats = registry.get_statistics()

    assert stats.total == 3
    assert stats.by_category == {"relational": 2, "storage_services": 1}
    assert stats.plugin_names == ["bucket", "counting", "echo"]


def test_round_trip_unregister(registry, echo_plugin):
    registry.register_plugin(echo_plugin)

    assert registry.unregister_plugin("echo") is True
    assert registry.get_plugin("echo") is None
    assert registry.unregister_plugin("echo") is False


def test_require_plugin_raises_not_found(registry):
    with pytest.raises(PluginNotFound) as exc:
        registry.require_plugin("oracle")

    assert exc.value.error_code == "PLUGIN_NOT_FOUND"
    assert "oracle" in str(exc.value)


def test_validate_unknown_plugin_returns_not_found_result(registry):
    result = registry.validate_plugin_configuration("nope", {})

    assert result.valid is False
    assert "not found" in result.errors[0]


def test_validate_delegates_to_schema(registry, counting_plugin):
    registry.register_plugin(counting_plugin)

    result = registry.validate_plugin_configuration("counting", {"port": 5432})

    assert result.errors == ["Missing required property: host"]


def test_manifests_strip_secret_defaults(registry):
    registry.register_plugin(BucketPlugin())

    manifest = registry.get_manifests()[0]

    assert manifest["category"] == "storage_services"
    assert "default" not in manifest["config_schema"]["properties"]["secret"]
    assert registry.get_descriptor("bucket").config_schema.properties["secret"].default == "s3cr3t"


def test_descriptor_is_immutable(registry, echo_plugin):
    descriptor = registry.register_plugin(echo_plugin)

    with pytest.raises(Exception):
        descriptor.name = "other"


def test_registries_are_isolated(echo_plugin):
    first = create_test_registry()
    second = create_test_registry()

    first.register_plugin(echo_plugin)

    assert second.get_plugin("echo") is None


def test_clear_and_reinitialize(registry, echo_plugin):
    registry.register_plugin(echo_plugin)
    registry.initialize()
    assert registry.is_initialized
    assert "sqlite" in registry

    registry.clear()
    assert len(registry) == 0
    assert not registry.is_initialized

    registry.reinitialize()
    assert registry.is_initialized
    assert "sqlite" in registry
    assert "echo" not in registry


def test_initialize_runs_once(registry):
    registry.initialize()
    registry.unregister_plugin("sqlite")

    registry.initialize()

    assert "sqlite" not in registry


def test_optional_plugins_follow_settings():
    statuses = get_plugin_statuses(Settings(plugin_athena_enabled=True))

    assert statuses["sqlite"].enabled
    assert statuses["sqlite"].dependencies_available
    assert statuses["athena"].enabled
    assert not statuses["mssql"].enabled
    assert not statuses["mssql"].should_load


def test_missing_dependency_is_skipped(monkeypatch):
    monkeypatch.setitem(
        registry_module.DEFAULT_PLUGINS,
        "sqlite",
        PluginSpec("datasource_hub.adapters.sqlalchemy_connector:SQLitePlugin", ("no_such_driver_module",)),
    )
    registry = create_test_registry()

    registry.initialize()

    status = registry.load_status["sqlite"]
    assert status.missing == ["no_such_driver_module"]
    assert not status.loaded
    assert "sqlite" not in registry


def test_failed_import_does_not_stop_loading(monkeypatch):
    monkeypatch.setitem(
        registry_module.DEFAULT_PLUGINS,
        "postgres",
        PluginSpec("datasource_hub.adapters.no_such_module:Plugin", ("sqlite3",)),
    )
    registry = create_test_registry()

    with capture_logs() as logs:
        registry.initialize()

    assert registry.load_status["postgres"].error
    assert "sqlite" in registry
    assert any(log["event"] == "Failed to load default plugin" for log in logs)
