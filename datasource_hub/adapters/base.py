"""
Base plugin interface for data source adapters.

Defines the protocol every data source plugin must implement and a base
class that turns a handful of backend hooks into the full lifecycle
contract (connect, test, execute, introspect, disconnect).
"""

from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Type, TypeVar, runtime_checkable

import structlog

from datasource_hub.core.redaction import preview_query, redact_config, scrub_message
from datasource_hub.exceptions import (
    DataSourceConnectionError,
    DataSourceHubError,
    IntrospectionError,
    QueryExecutionError,
    UnsupportedRequestError,
)
from datasource_hub.models import (
    ColumnInfo,
    ConfigurationSchema,
    PluginCapabilities,
    PluginCategory,
    PluginDescriptor,
    QueryResult,
    SchemaInfo,
    TableInfo,
    ViewInfo,
)
from datasource_hub.settings import settings

from .connection import Connection, ConnectionHandle
from .normalization import Stopwatch
from .requests import ListRequest, ReadRequest, SqlRequest, coerce_request

logger = structlog.get_logger(__name__)

T = TypeVar("T")

REQUIRED_FIELDS = ("name", "display_name", "category", "version", "config_schema")
REQUIRED_METHODS = (
    "connect",
    "test_connection",
    "execute_query",
    "get_schema",
    "get_tables",
    "get_columns",
    "disconnect",
)


@runtime_checkable
class DataSourcePlugin(Protocol):
    """
    Protocol for data source plugins.

    All plugins must implement this interface so the registry and service
    can drive any backend (SQL database, object store, lake table) the
    same way.
    """

    name: str
    display_name: str
    category: PluginCategory
    version: str
    config_schema: ConfigurationSchema

    async def connect(self, config: Mapping) -> Connection:
        """
        Open the underlying client or pool.

        Args:
            config: Connection configuration matching ``config_schema``

        Returns:
            A connected Connection
        """
        ...

    async def test_connection(self, config: Mapping) -> bool:
        """Connect, probe and disconnect; never raises."""
        ...

    async def execute_query(self, connection: Connection, query: Any, params: Any = None) -> QueryResult:
        """
        Execute exactly one query or request.

        Args:
            connection: Live connection from ``connect``
            query: SQL text or a typed data request
            params: Optional query parameters

        Returns:
            Normalized query result
        """
        ...

    async def get_schema(self, connection: Connection) -> SchemaInfo:
        """Describe tables and views; best effort."""
        ...

    async def get_tables(self, connection: Connection, database: Optional[str] = None) -> List[TableInfo]:
        """List tables (or objects) in a database, bucket or namespace; best effort."""
        ...

    async def get_columns(self, connection: Connection, table: str) -> List[ColumnInfo]:
        """Describe the columns of one table; best effort."""
        ...

    async def disconnect(self, connection: Connection) -> None:
        """Release all resources. Idempotent."""
        ...


class BasePlugin:
    """
    Base implementation providing the lifecycle contract.

    Subclasses set the descriptor attributes and implement ``_open`` and
    ``_execute``; introspection hooks default to empty results.
    """

    name: str = ""
    display_name: str = ""
    category: PluginCategory = PluginCategory.RELATIONAL
    version: str = "1.0.0"
    description: Optional[str] = None
    config_schema: ConfigurationSchema = ConfigurationSchema()
    capabilities: Optional[PluginCapabilities] = None
    author: Optional[str] = None
    license: Optional[str] = None

    # Request variants this plugin can serve
    supported_requests: Tuple[Type, ...] = (SqlRequest,)
    # Statement used by the default probe; None means connecting is proof enough
    probe_query: Optional[str] = None
    # Whether get_schema describes every table's columns
    schema_includes_columns: bool = True

    def descriptor(self) -> PluginDescriptor:
        return PluginDescriptor(
            name=self.name,
            display_name=self.display_name,
            category=self.category,
            version=self.version,
            description=self.description,
            config_schema=self.config_schema,
            capabilities=self.capabilities,
            author=self.author,
            license=self.license,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, version={self.version!r})"

    # -- backend hooks -----------------------------------------------------

    async def _open(self, config: Dict[str, Any]) -> ConnectionHandle:
        raise NotImplementedError

    async def _on_connect(self, connection: Connection) -> None:
        """Optional proof round trip right after the handle is opened."""

    async def _execute(
        self,
        connection: Connection,
        resource: Any,
        request: Any,
    ) -> QueryResult:
        raise NotImplementedError

    async def _get_tables(self, connection: Connection, database: Optional[str]) -> List[TableInfo]:
        return []

    async def _get_columns(self, connection: Connection, table: str) -> List[ColumnInfo]:
        return []

    async def probe(self, connection: Connection) -> None:
        """Cheapest operation that proves the backend answers."""
        if self.probe_query:
            await self.execute_query(connection, self.probe_query)

    # -- contract ----------------------------------------------------------

    async def connect(self, config: Mapping) -> Connection:
        config = dict(config)
        watch = Stopwatch()
        handle: Optional[ConnectionHandle] = None
        connection: Optional[Connection] = None

        try:
            handle = await self._open(config)
            connection = Connection(self.name, config, handle)
            await self._on_connect(connection)
        except Exception as e:
            if connection is not None:
                connection.mark_disconnected()
            if handle is not None:
                await self._release_after_failure(handle)

            message = scrub_message(str(e))
            logger.error(
                "Failed to connect to data source",
                plugin=self.name,
                config=redact_config(config, self.config_schema.secret_keys),
                error=message,
                duration_ms=watch.elapsed_ms,
            )
            if isinstance(e, DataSourceConnectionError):
                raise
            raise DataSourceConnectionError(
                f"Failed to connect to {self.display_name or self.name}: {message}",
                plugin_name=self.name,
                cause=e,
            ) from e

        logger.info(
            "Connected to data source",
            plugin=self.name,
            connection_id=connection.id,
            handle=handle.kind.value,
            duration_ms=watch.elapsed_ms,
        )
        return connection

    async def test_connection(self, config: Mapping) -> bool:
        try:
            connection = await self.connect(config)
        except Exception as e:
            logger.warning("Connection test failed", plugin=self.name, stage="connect", error=scrub_message(str(e)))
            return False

        try:
            await self.probe(connection)
            return True
        except Exception as e:
            logger.warning("Connection test failed", plugin=self.name, stage="probe", error=scrub_message(str(e)))
            return False
        finally:
            try:
                await self.disconnect(connection)
            except Exception as e:
                logger.warning("Disconnect after connection test failed", plugin=self.name, error=scrub_message(str(e)))

    async def execute_query(self, connection: Connection, query: Any, params: Any = None) -> QueryResult:
        connection.ensure_open()
        request = coerce_request(query, params)
        preview = preview_query(request, settings.query_preview_chars)

        if not isinstance(request, self.supported_requests):
            raise UnsupportedRequestError(
                f"Plugin {self.name} does not support {request.kind} requests",
                plugin_name=self.name,
                query_preview=preview,
            )

        watch = Stopwatch()
        try:
            async with connection.handle.exclusive() as resource:
                result = await self._execute(connection, resource, request)
        except DataSourceHubError as e:
            if isinstance(e, QueryExecutionError) and e.query_preview is None:
                e.query_preview = preview
                e.context["query_preview"] = preview
            logger.error(
                "Query failed",
                plugin=self.name,
                connection_id=connection.id,
                error_code=e.error_code,
                duration_ms=watch.elapsed_ms,
                query_preview=preview,
            )
            raise
        except Exception as e:
            native = scrub_message(str(e))
            logger.error(
                "Query failed",
                plugin=self.name,
                connection_id=connection.id,
                error=native,
                duration_ms=watch.elapsed_ms,
                query_preview=preview,
            )
            raise QueryExecutionError(
                f"Query failed on {self.name}: {native}",
                plugin_name=self.name,
                query_preview=preview,
                native_message=native,
                cause=e,
            ) from e

        if isinstance(result, Mapping):
            result = QueryResult(**result)
        result.execution_time_ms = watch.elapsed_ms
        connection.touch()

        logger.info(
            "Executed query",
            plugin=self.name,
            connection_id=connection.id,
            rows=result.row_count,
            columns=len(result.columns),
            duration_ms=result.execution_time_ms,
            query_preview=preview,
        )
        return result

    async def get_schema(self, connection: Connection) -> SchemaInfo:
        tables = await self._introspect(
            "get_schema", connection, lambda: self._get_tables(connection, None), []
        )
        schema = SchemaInfo()
        for table in tables:
            if self.schema_includes_columns and table.columns is None:
                # A table whose columns cannot be read still appears, with an empty list
                qualified = f"{table.schema_name}.{table.name}" if table.schema_name else table.name
                table.columns = await self.get_columns(connection, qualified)
            if isinstance(table, ViewInfo) or table.type == "view":
                schema.views.append(table if isinstance(table, ViewInfo) else ViewInfo(**table.model_dump()))
            else:
                schema.tables.append(table)
        return schema

    async def get_tables(self, connection: Connection, database: Optional[str] = None) -> List[TableInfo]:
        return await self._introspect(
            "get_tables", connection, lambda: self._get_tables(connection, database), []
        )

    async def get_columns(self, connection: Connection, table: str) -> List[ColumnInfo]:
        return await self._introspect(
            "get_columns", connection, lambda: self._get_columns(connection, table), [], table=table
        )

    async def disconnect(self, connection: Connection) -> None:
        if connection.released and not connection.is_connected:
            return
        try:
            await connection.handle.release()
        except Exception as e:
            raise DataSourceConnectionError(
                f"Failed to release connection {connection.id}: {scrub_message(str(e))}",
                plugin_name=self.name,
                cause=e,
            ) from e
        finally:
            connection.mark_disconnected()
        logger.info("Disconnected from data source", plugin=self.name, connection_id=connection.id)

    # -- helpers -----------------------------------------------------------

    async def _introspect(
        self,
        operation: str,
        connection: Connection,
        call: Callable[[], Awaitable[T]],
        default: T,
        **log_context: Any,
    ) -> T:
        """Run an introspection hook, downgrading any failure to ``default``."""
        watch = Stopwatch()
        try:
            connection.ensure_open()
            result = await call()
        except IntrospectionError as e:
            error = e
        except Exception as e:
            error = IntrospectionError(
                f"{operation} failed: {scrub_message(str(e))}",
                plugin_name=self.name,
                cause=e,
            )
        else:
            error = None

        if error is not None:
            logger.warning(
                "Introspection failed",
                plugin=self.name,
                operation=operation,
                connection_id=connection.id,
                error=scrub_message(error.message),
                error_code=error.error_code,
                **log_context,
            )
            return default
        connection.touch()
        logger.debug(
            "Introspection complete",
            plugin=self.name,
            operation=operation,
            duration_ms=watch.elapsed_ms,
            **log_context,
        )
        return result

    async def _release_after_failure(self, handle: ConnectionHandle) -> None:
        try:
            await handle.release()
        except Exception as e:
            logger.warning("Failed to release handle after connect error", plugin=self.name, error=scrub_message(str(e)))


# Request variants the object-store style plugins accept
DATA_REQUESTS = (ListRequest, ReadRequest)
