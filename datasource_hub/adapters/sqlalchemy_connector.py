"""
SQLAlchemy-based plugins for SQL databases.

Provides connectivity to PostgreSQL, MySQL, MariaDB, SQLite, SQL Server,
Oracle and Snowflake using SQLAlchemy as the driver abstraction layer. Each
Connection wraps one pooled Engine; blocking driver calls run in a worker
thread so the contract stays non-blocking.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.pool import StaticPool

from datasource_hub.models import (
    ColumnInfo,
    ConfigurationSchema,
    PluginCapabilities,
    PluginCategory,
    QueryResult,
    SchemaProperty,
    TableInfo,
    ViewInfo,
)
from datasource_hub.settings import settings

from .base import BasePlugin
from .connection import Connection, PoolHandle
from .normalization import build_result, normalize_type
from .requests import SqlRequest

logger = structlog.get_logger(__name__)


def server_schema(default_port: int, database_required: bool = True, **extra: SchemaProperty) -> ConfigurationSchema:
    """Configuration schema shared by host/port/user/password style databases."""
    properties = {
        "host": SchemaProperty(type="string", title="Host", description="Database host address", default="localhost"),
        "port": SchemaProperty(
            type="integer", title="Port", description="Database port number",
            default=default_port, minimum=1, maximum=65535,
        ),
        "database": SchemaProperty(type="string", title="Database", description="Database name to connect to"),
        "username": SchemaProperty(type="string", title="Username", description="Database username"),
        "password": SchemaProperty(type="password", title="Password", description="Database password"),
    }
    properties.update(extra)
    required = ["host", "username", "password"]
    if database_required:
        required.insert(1, "database")
    return ConfigurationSchema(properties=properties, required=required, additional_properties=False)


class SQLAlchemyPlugin(BasePlugin):
    """
    Universal SQL plugin using SQLAlchemy.

    Subclasses pick the dialect through ``drivername`` and may override
    ``build_url`` / ``engine_options`` for backend-specific settings.
    """

    category = PluginCategory.RELATIONAL
    version = "1.0.0"
    author = "Datasource Hub"
    license = "MIT"
    drivername: str = ""
    default_port: Optional[int] = None
    probe_query = "SELECT 1"

    def build_url(self, config: Dict[str, Any]) -> URL:
        return URL.create(
            self.drivername,
            username=config.get("username"),
            password=config.get("password"),
            host=config.get("host"),
            port=config.get("port") or self.default_port,
            database=config.get("database"),
        )

    def engine_options(self, config: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "pool_size": config.get("pool_size") or settings.pool_size,
            "max_overflow": settings.max_overflow,
            "pool_timeout": settings.pool_timeout,
            "pool_pre_ping": True,  # Validate connections before use
        }

    def default_schema(self, config: Dict[str, Any]) -> Optional[str]:
        return config.get("schema")

    async def _open(self, config: Dict[str, Any]) -> PoolHandle:
        engine = create_engine(self.build_url(config), **self.engine_options(config))
        logger.debug("Created SQLAlchemy engine", plugin=self.name, url_scheme=engine.url.drivername)
        return PoolHandle(engine, closer=lambda e: asyncio.to_thread(e.dispose))

    async def _on_connect(self, connection: Connection) -> None:
        # Proof round trip so bad credentials fail in connect(), not on first query
        await asyncio.to_thread(self._ping, connection.handle.resource)

    def _ping(self, engine: Engine) -> None:
        with engine.connect() as conn:
            conn.exec_driver_sql(self.probe_query)

    async def _execute(self, connection: Connection, engine: Engine, request: SqlRequest) -> QueryResult:
        return await asyncio.to_thread(self._run, engine, request)

    def _run(self, engine: Engine, request: SqlRequest) -> QueryResult:
        with engine.connect() as conn:
            if isinstance(request.params, list):
                # Positional parameters use the driver's own paramstyle
                cursor = conn.exec_driver_sql(request.statement, tuple(request.params))
            else:
                cursor = conn.execute(text(request.statement), request.params or {})

            if cursor.returns_rows:
                keys = list(cursor.keys())
                rows = [dict(zip(keys, row)) for row in cursor.fetchall()]
                conn.commit()
                return build_result(rows, keys)

            affected = cursor.rowcount
            conn.commit()
            return build_result([], [], affected_rows=affected)

    async def _get_tables(self, connection: Connection, database: Optional[str]) -> List[TableInfo]:
        schema = database or self.default_schema(dict(connection.config))
        return await asyncio.to_thread(self._list_tables, connection.handle.resource, schema)

    def _list_tables(self, engine: Engine, schema: Optional[str]) -> List[TableInfo]:
        inspector = inspect(engine)
        tables: List[TableInfo] = [
            TableInfo(name=name, schema_name=schema, type="table")
            for name in inspector.get_table_names(schema=schema)
        ]
        for name in inspector.get_view_names(schema=schema):
            try:
                definition = inspector.get_view_definition(name, schema=schema)
            except Exception as e:
                logger.debug("View definition unavailable", plugin=self.name, view=name, error=str(e))
                definition = None
            tables.append(ViewInfo(name=name, schema_name=schema, definition=definition))

        logger.debug("Listed tables", plugin=self.name, schema=schema, count=len(tables))
        return tables

    async def _get_columns(self, connection: Connection, table: str) -> List[ColumnInfo]:
        schema, name = self._split_table(table, self.default_schema(dict(connection.config)))
        return await asyncio.to_thread(self._describe, connection.handle.resource, name, schema)

    def _describe(self, engine: Engine, table: str, schema: Optional[str]) -> List[ColumnInfo]:
        inspector = inspect(engine)
        columns = inspector.get_columns(table, schema=schema)
        try:
            primary_key = set(inspector.get_pk_constraint(table, schema=schema).get("constrained_columns") or [])
        except NotImplementedError:
            primary_key = set()

        result = []
        for col in columns:
            default = col.get("default")
            result.append(ColumnInfo(
                name=col["name"],
                type=normalize_type(col["type"]),
                nullable=col.get("nullable", True),
                default_value=str(default) if default is not None else None,
                is_primary_key=col["name"] in primary_key,
            ))

        logger.debug("Retrieved column info", plugin=self.name, table=table, column_count=len(result))
        return result

    @staticmethod
    def _split_table(table: str, default_schema: Optional[str]) -> Tuple[Optional[str], str]:
        if "." in table:
            schema, name = table.rsplit(".", 1)
            return schema, name
        return default_schema, table


class PostgresPlugin(SQLAlchemyPlugin):
    name = "postgres"
    display_name = "PostgreSQL"
    description = "PostgreSQL database connector"
    drivername = "postgresql+psycopg2"
    default_port = 5432
    config_schema = server_schema(
        5432,
        schema=SchemaProperty(type="string", title="Schema", default="public"),
        ssl=SchemaProperty(type="boolean", title="SSL", description="Enable SSL/TLS connection", default=False),
    )
    capabilities = PluginCapabilities(
        supports_bulk_insert=True,
        supports_transactions=True,
        supports_stored_procedures=True,
        supports_streaming=True,
        max_concurrent_connections=100,
    )

    def default_schema(self, config: Dict[str, Any]) -> Optional[str]:
        return config.get("schema") or "public"

    def engine_options(self, config: Dict[str, Any]) -> Dict[str, Any]:
        options = super().engine_options(config)
        if config.get("ssl"):
            options["connect_args"] = {"sslmode": "require"}
        return options


class MySQLPlugin(SQLAlchemyPlugin):
    name = "mysql"
    display_name = "MySQL"
    description = "MySQL database connector"
    drivername = "mysql+pymysql"
    default_port = 3306
    config_schema = server_schema(3306)
    capabilities = PluginCapabilities(
        supports_bulk_insert=True,
        supports_transactions=True,
        supports_stored_procedures=True,
        max_concurrent_connections=100,
    )

    def default_schema(self, config: Dict[str, Any]) -> Optional[str]:
        # MySQL schemas are databases
        return config.get("database")


class MariaDBPlugin(MySQLPlugin):
    name = "mariadb"
    display_name = "MariaDB"
    description = "MariaDB database connector"
    drivername = "mariadb+pymysql"


class SQLitePlugin(SQLAlchemyPlugin):
    name = "sqlite"
    display_name = "SQLite"
    description = "SQLite file or in-memory database"
    config_schema = ConfigurationSchema(
        properties={
            "filename": SchemaProperty(
                type="string", title="Database File Path",
                description="Path to the database file, or :memory:", min_length=1,
            ),
            "timeout": SchemaProperty(
                type="number", title="Busy Timeout", description="Seconds to wait on a locked database",
                default=5, minimum=0,
            ),
        },
        required=["filename"],
        additional_properties=False,
    )
    capabilities = PluginCapabilities(supports_transactions=True, max_concurrent_connections=1)

    def build_url(self, config: Dict[str, Any]) -> URL:
        return URL.create("sqlite", database=config["filename"])

    def engine_options(self, config: Dict[str, Any]) -> Dict[str, Any]:
        connect_args = {"check_same_thread": False, "timeout": config.get("timeout", 5)}
        if config["filename"] == ":memory:":
            # One shared connection, otherwise every checkout sees an empty database
            return {"poolclass": StaticPool, "connect_args": connect_args}
        return {"connect_args": connect_args, "pool_pre_ping": True}


class SQLServerPlugin(SQLAlchemyPlugin):
    name = "mssql"
    display_name = "Microsoft SQL Server"
    description = "SQL Server connector through ODBC"
    drivername = "mssql+pyodbc"
    default_port = 1433
    config_schema = server_schema(
        1433,
        driver=SchemaProperty(type="string", title="ODBC Driver", default="ODBC Driver 18 for SQL Server"),
        trust_server_certificate=SchemaProperty(type="boolean", title="Trust Server Certificate", default=False),
    )
    capabilities = PluginCapabilities(
        supports_bulk_insert=True,
        supports_transactions=True,
        supports_stored_procedures=True,
        max_concurrent_connections=100,
    )

    def build_url(self, config: Dict[str, Any]) -> URL:
        query = {"driver": config.get("driver") or "ODBC Driver 18 for SQL Server"}
        if config.get("trust_server_certificate"):
            query["TrustServerCertificate"] = "yes"
        return super().build_url(config).update_query_dict(query)


class OraclePlugin(SQLAlchemyPlugin):
    name = "oracle"
    display_name = "Oracle Database"
    description = "Oracle connector using python-oracledb"
    drivername = "oracle+oracledb"
    default_port = 1521
    probe_query = "SELECT 1 FROM DUAL"
    config_schema = server_schema(
        1521,
        database_required=False,
        service_name=SchemaProperty(type="string", title="Service Name"),
    )
    capabilities = PluginCapabilities(
        supports_bulk_insert=True,
        supports_transactions=True,
        supports_stored_procedures=True,
        max_concurrent_connections=100,
    )

    def build_url(self, config: Dict[str, Any]) -> URL:
        if not config.get("service_name"):
            return super().build_url(config)
        # URL.set ignores None, so the database has to be left out up front
        url = super().build_url({**config, "database": None})
        return url.update_query_dict({"service_name": config["service_name"]})


class SnowflakePlugin(SQLAlchemyPlugin):
    name = "snowflake"
    display_name = "Snowflake"
    category = PluginCategory.CLOUD_DATABASES
    description = "Snowflake cloud data warehouse"
    drivername = "snowflake"
    config_schema = ConfigurationSchema(
        properties={
            "account": SchemaProperty(type="string", title="Account", description="Snowflake account identifier"),
            "username": SchemaProperty(type="string", title="Username"),
            "password": SchemaProperty(type="password", title="Password"),
            "database": SchemaProperty(type="string", title="Database"),
            "schema": SchemaProperty(type="string", title="Schema", default="PUBLIC"),
            "warehouse": SchemaProperty(type="string", title="Warehouse"),
            "role": SchemaProperty(type="string", title="Role"),
        },
        required=["account", "username", "password", "database", "warehouse"],
        additional_properties=False,
    )
    capabilities = PluginCapabilities(supports_transactions=True, max_concurrent_connections=50)

    def build_url(self, config: Dict[str, Any]) -> URL:
        database = config["database"]
        if config.get("schema"):
            database = f"{database}/{config['schema']}"
        query = {key: config[key] for key in ("warehouse", "role") if config.get(key)}
        return URL.create(
            self.drivername,
            username=config.get("username"),
            password=config.get("password"),
            host=config.get("account"),
            database=database,
            query=query,
        )
