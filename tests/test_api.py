"""
Tests for the HTTP catalog endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from datasource_hub.api.app import create_app
from datasource_hub.settings import settings

from conftest import CountingPlugin, EchoPlugin

PREFIX = settings.api_prefix


@pytest.fixture
def client(registry):
    registry.register_plugin(CountingPlugin())
    registry.register_plugin(EchoPlugin())
    with TestClient(create_app(registry, load_defaults=False)) as test_client:
        yield test_client


def test_health(client):
    response = client.get(f"{PREFIX}/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["plugins_loaded"] == 2
    assert body["uptime_seconds"] >= 0


def test_ready_without_default_catalog(client):
    assert client.get(f"{PREFIX}/ready").json()["status"] == "ready"


def test_list_and_filter_plugins(client):
    everything = client.get(f"{PREFIX}/plugins").json()
    relational = client.get(f"{PREFIX}/plugins", params={"category": "relational"}).json()
    lakes = client.get(f"{PREFIX}/plugins", params={"category": "data_lakes"}).json()
    searched = client.get(f"{PREFIX}/plugins", params={"search": "COUNT"}).json()

    assert [p["name"] for p in everything["plugins"]] == ["counting", "echo"]
    assert everything["total"] == 2
    assert relational["total"] == 2
    assert lakes == {"plugins": [], "total": 0}
    assert [p["name"] for p in searched["plugins"]] == ["counting"]


def test_categories_and_statistics(client):
    assert client.get(f"{PREFIX}/plugins/categories").json() == {"categories": ["relational"]}
    stats = client.get(f"{PREFIX}/plugins/statistics").json()
    assert stats["total"] == 2
    assert stats["by_category"] == {"relational": 2}


def test_manifest_and_config_schema_hide_secret_defaults(client):
    manifest = client.get(f"{PREFIX}/plugins/counting").json()
    schema = client.get(f"{PREFIX}/plugins/counting/config-schema").json()

    assert manifest["display_name"] == "Counting Database"
    assert "default" not in manifest["config_schema"]["properties"]["password"]
    assert "default" not in schema["properties"]["password"]
    assert schema["required"] == ["host"]
    assert schema["additionalProperties"] is False


def test_unknown_plugin_is_404(client):
    response = client.get(f"{PREFIX}/plugins/teradata")

    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "plugin_not_found"
    assert body["details"]["plugin"] == "teradata"
    assert "teradata" in body["message"]


def test_validate_endpoint(client):
    response = client.post(f"{PREFIX}/plugins/counting/validate", json={"config": {"port": 0}})

    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is False
    assert len(body["errors"]) == 2


def test_validate_unknown_plugin_is_404(client):
    response = client.post(f"{PREFIX}/plugins/teradata/validate", json={"config": {}})

    assert response.status_code == 404


def test_test_connection_endpoint(client):
    ok = client.post(f"{PREFIX}/plugins/counting/test-connection", json={"config": {"host": "db"}}).json()
    failed = client.post(
        f"{PREFIX}/plugins/counting/test-connection",
        json={"config": {"host": "unreachable", "password": "hunter2"}},
    ).json()

    assert ok["success"] is True
    assert failed["success"] is False
    assert failed["error_code"] == "CONNECTION_FAILED"
    assert "hunter2" not in failed["message"]


def test_load_status_empty_without_default_catalog(client):
    assert client.get(f"{PREFIX}/plugins/load-status").json() == {}


def test_default_catalog_loads_on_startup():
    with TestClient(create_app()) as test_client:
        plugins = test_client.get(f"{PREFIX}/plugins").json()
        status = test_client.get(f"{PREFIX}/plugins/load-status").json()
        ready = test_client.get(f"{PREFIX}/ready").json()

    assert "sqlite" in [p["name"] for p in plugins["plugins"]]
    assert status["sqlite"]["loaded"] is True
    assert ready["status"] == "ready"
