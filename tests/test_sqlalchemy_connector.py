"""
Tests for the SQLAlchemy-backed plugins, exercised against SQLite.
"""

import pytest

from datasource_hub.adapters.connection import HandleKind
from datasource_hub.adapters.sqlalchemy_connector import (
    MariaDBPlugin,
    OraclePlugin,
    PostgresPlugin,
    SnowflakePlugin,
    SQLitePlugin,
    SQLServerPlugin,
)
from datasource_hub.adapters.validator import validate
from datasource_hub.exceptions import DataSourceConnectionError, QueryExecutionError


@pytest.fixture
def plugin():
    return SQLitePlugin()


@pytest.fixture
def db_config(tmp_path):
    return {"filename": str(tmp_path / "sales.db")}


async def _seed(plugin, connection):
    await plugin.execute_query(
        connection,
        "CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT NOT NULL, balance REAL)",
    )
    await plugin.execute_query(
        connection,
        "INSERT INTO customers (id, name, balance) VALUES (1, 'Ada', 10.5), (2, 'Grace', NULL)",
    )
    await plugin.execute_query(connection, "CREATE VIEW rich AS SELECT * FROM customers WHERE balance > 5")


@pytest.mark.asyncio
async def test_query_round_trip(plugin, db_config):
    connection = await plugin.connect(db_config)
    await _seed(plugin, connection)

    result = await plugin.execute_query(connection, "SELECT id, name, balance FROM customers ORDER BY id")

    assert connection.handle.kind == HandleKind.POOL
    assert result.rows == [
        {"id": 1, "name": "Ada", "balance": 10.5},
        {"id": 2, "name": "Grace", "balance": None},
    ]
    assert [c.name for c in result.columns] == ["id", "name", "balance"]
    assert result.columns[0].type == "integer"
    assert result.row_count == 2
    await plugin.disconnect(connection)


@pytest.mark.asyncio
async def test_named_and_positional_params(plugin, db_config):
    connection = await plugin.connect(db_config)
    await _seed(plugin, connection)

    named = await plugin.execute_query(connection, "SELECT name FROM customers WHERE id = :id", {"id": 2})
    positional = await plugin.execute_query(connection, "SELECT name FROM customers WHERE id = ?", [1])

    assert named.rows == [{"name": "Grace"}]
    assert positional.rows == [{"name": "Ada"}]
    await plugin.disconnect(connection)


@pytest.mark.asyncio
async def test_mutation_reports_affected_rows(plugin, db_config):
    connection = await plugin.connect(db_config)
    await _seed(plugin, connection)

    result = await plugin.execute_query(connection, "UPDATE customers SET balance = 0")

    assert result.rows == []
    assert result.row_count == 2
    await plugin.disconnect(connection)


@pytest.mark.asyncio
async def test_in_memory_database_is_shared_across_calls(plugin):
    connection = await plugin.connect({"filename": ":memory:"})
    await _seed(plugin, connection)

    result = await plugin.execute_query(connection, "SELECT count(*) AS n FROM customers")

    assert result.rows == [{"n": 2}]
    await plugin.disconnect(connection)


@pytest.mark.asyncio
async def test_bad_sql_raises_query_error(plugin, db_config):
    connection = await plugin.connect(db_config)

    with pytest.raises(QueryExecutionError) as exc:
        await plugin.execute_query(connection, "SELECT * FROM missing_table")

    assert "missing_table" in exc.value.native_message
    assert exc.value.query_preview == "SELECT * FROM missing_table"
    assert connection.is_connected
    await plugin.disconnect(connection)


@pytest.mark.asyncio
async def test_unreachable_database_fails_connect(plugin, tmp_path):
    config = {"filename": str(tmp_path / "no" / "such" / "dir" / "x.db")}

    with pytest.raises(DataSourceConnectionError):
        await plugin.connect(config)
    assert await plugin.test_connection(config) is False


@pytest.mark.asyncio
async def test_test_connection(plugin, db_config):
    assert await plugin.test_connection(db_config) is True


@pytest.mark.asyncio
async def test_introspection(plugin, db_config):
    connection = await plugin.connect(db_config)
    await _seed(plugin, connection)

    tables = await plugin.get_tables(connection)
    columns = await plugin.get_columns(connection, "customers")
    schema = await plugin.get_schema(connection)

    assert [(t.name, t.type) for t in tables] == [("customers", "table"), ("rich", "view")]
    assert [c.name for c in columns] == ["id", "name", "balance"]
    assert columns[0].is_primary_key and not columns[1].is_primary_key
    assert columns[1].type == "string" and columns[1].nullable is False
    assert columns[2].type == "number"
    assert [t.name for t in schema.tables] == ["customers"]
    assert schema.tables[0].columns == columns
    assert schema.views[0].name == "rich"
    assert "balance > 5" in schema.views[0].definition
    await plugin.disconnect(connection)


@pytest.mark.asyncio
async def test_columns_of_unknown_table_are_empty(plugin, db_config):
    connection = await plugin.connect(db_config)

    assert await plugin.get_columns(connection, "nope") == []
    await plugin.disconnect(connection)


@pytest.mark.asyncio
async def test_disconnect_disposes_engine(plugin, db_config):
    connection = await plugin.connect(db_config)

    await plugin.disconnect(connection)

    assert connection.released
    with pytest.raises(DataSourceConnectionError):
        await plugin.execute_query(connection, "SELECT 1")


def test_postgres_url_and_ssl():
    plugin = PostgresPlugin()
    config = {"host": "db", "database": "sales", "username": "bi", "password": "pw", "ssl": True}

    url = plugin.build_url(config)

    assert url.drivername == "postgresql+psycopg2"
    assert url.port == 5432
    assert url.database == "sales"
    assert plugin.engine_options(config)["connect_args"] == {"sslmode": "require"}
    assert plugin.default_schema(config) == "public"


def test_mariadb_driver():
    assert MariaDBPlugin().build_url({"host": "db", "database": "x"}).drivername == "mariadb+pymysql"


def test_sqlserver_url_carries_odbc_driver():
    url = SQLServerPlugin().build_url({"host": "db", "database": "x", "trust_server_certificate": True})

    assert url.query["driver"] == "ODBC Driver 18 for SQL Server"
    assert url.query["TrustServerCertificate"] == "yes"


def test_oracle_service_name_replaces_database():
    url = OraclePlugin().build_url({"host": "db", "service_name": "ORCLPDB1", "database": "ignored"})

    assert url.database is None
    assert url.query["service_name"] == "ORCLPDB1"
    assert url.host == "db"
    assert url.port == 1521


def test_oracle_without_service_name_keeps_database():
    url = OraclePlugin().build_url({"host": "db", "database": "XE"})

    assert url.database == "XE"
    assert "service_name" not in url.query


def test_snowflake_url():
    url = SnowflakePlugin().build_url({
        "account": "xy12345", "username": "u", "password": "p",
        "database": "ANALYTICS", "schema": "PUBLIC", "warehouse": "WH",
    })

    assert url.host == "xy12345"
    assert url.database == "ANALYTICS/PUBLIC"
    assert url.query == {"warehouse": "WH"}


def test_server_schema_requires_credentials():
    result = validate(PostgresPlugin.config_schema, {"host": "db"})

    assert sorted(result.errors) == [
        "Missing required property: database",
        "Missing required property: password",
        "Missing required property: username",
    ]


def test_descriptors_register_cleanly(registry):
    for plugin in (SQLitePlugin(), PostgresPlugin(), SnowflakePlugin()):
        registry.register_plugin(plugin)

    assert registry.get_categories() == ["cloud_databases", "relational"]
    manifest = registry.get_descriptor("postgres").manifest()
    assert manifest["config_schema"]["properties"]["password"]["type"] == "password"
