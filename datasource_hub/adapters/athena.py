"""
AWS Athena plugin.

Queries run asynchronously on the Athena side: start the execution, poll
its state with a bounded wait, then page through the results. Catalog
introspection goes through Athena's Glue metadata API.
"""

import asyncio
from typing import Any, Dict, List, Optional

import structlog

from datasource_hub.exceptions import QueryExecutionError, QueryTimeoutError
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
from .connection import Connection, StatelessHandle
from .normalization import BOOLEAN, INTEGER, NUMBER, build_result, normalize_type
from .requests import SqlRequest
from .storage import ClientFactory, aws_properties, boto3_client_factory, close_client

logger = structlog.get_logger(__name__)

TERMINAL_FAILURES = ("FAILED", "CANCELLED")


def _convert(value: Optional[str], col_type: str) -> Any:
    if value is None:
        return None
    try:
        if col_type == INTEGER:
            return int(value)
        if col_type == NUMBER:
            return float(value)
    except ValueError:
        return value
    if col_type == BOOLEAN:
        return value.lower() == "true"
    return value


def _metadata_columns(metadata: Dict[str, Any]) -> List[ColumnInfo]:
    columns = metadata.get("Columns", []) + metadata.get("PartitionKeys", [])
    return [ColumnInfo(name=col["Name"], type=normalize_type(col.get("Type"))) for col in columns]


class AthenaPlugin(BasePlugin):
    """Serverless SQL over S3 through AWS Athena."""

    name = "athena"
    display_name = "AWS Athena"
    category = PluginCategory.CLOUD_DATABASES
    version = "1.0.0"
    description = "Connect to AWS Athena"
    author = "Datasource Hub"
    license = "MIT"
    config_schema = ConfigurationSchema(
        properties=aws_properties(
            database=SchemaProperty(type="string", title="Database"),
            catalog=SchemaProperty(type="string", title="Data Catalog", default="AwsDataCatalog"),
            workgroup=SchemaProperty(type="string", title="Workgroup", default="primary"),
            output_location=SchemaProperty(type="string", title="S3 Output Location", pattern=r"^s3://"),
        ),
        required=["region", "access_key_id", "secret_access_key", "database", "output_location"],
        additional_properties=False,
    )
    capabilities = PluginCapabilities(max_concurrent_connections=20)
    probe_query = "SELECT 1"

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        poll_interval: Optional[float] = None,
        max_wait: Optional[float] = None,
    ):
        self._client_factory = client_factory or boto3_client_factory
        self.poll_interval = poll_interval or settings.athena_poll_interval_seconds
        self.max_wait = max_wait or settings.athena_max_wait_seconds

    async def _open(self, config: Dict[str, Any]) -> StatelessHandle:
        client = await asyncio.to_thread(self._client_factory, "athena", config)
        return StatelessHandle(client, closer=close_client)

    async def _execute(self, connection: Connection, client: Any, request: SqlRequest) -> QueryResult:
        execution_id = await asyncio.to_thread(self._start, client, connection.config, request)
        logger.debug("Started Athena query", plugin=self.name, query_execution_id=execution_id)
        await self._wait_for_completion(client, execution_id)
        return await asyncio.to_thread(self._fetch_results, client, execution_id)

    def _start(self, client: Any, config: Dict[str, Any], request: SqlRequest) -> str:
        if isinstance(request.params, dict):
            raise QueryExecutionError(
                "Athena only supports positional query parameters",
                plugin_name=self.name,
                query_preview=request.statement[:200],
            )
        kwargs = {
            "QueryString": request.statement,
            "QueryExecutionContext": {
                "Database": config["database"],
                "Catalog": config.get("catalog") or "AwsDataCatalog",
            },
            "ResultConfiguration": {"OutputLocation": config["output_location"]},
            "WorkGroup": config.get("workgroup") or "primary",
        }
        if request.params:
            kwargs["ExecutionParameters"] = [str(p) for p in request.params]
        return client.start_query_execution(**kwargs)["QueryExecutionId"]

    async def _wait_for_completion(self, client: Any, execution_id: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_wait

        while True:
            response = await asyncio.to_thread(client.get_query_execution, QueryExecutionId=execution_id)
            status = response["QueryExecution"]["Status"]
            state = status["State"]

            if state == "SUCCEEDED":
                return
            if state in TERMINAL_FAILURES:
                reason = status.get("StateChangeReason", "")
                raise QueryExecutionError(
                    f"Athena query {state}: {reason}",
                    plugin_name=self.name,
                    native_message=reason,
                )
            if loop.time() >= deadline:
                break
            await asyncio.sleep(self.poll_interval)

        try:
            await asyncio.to_thread(client.stop_query_execution, QueryExecutionId=execution_id)
        except Exception as e:
            logger.warning("Failed to stop timed out Athena query", query_execution_id=execution_id, error=str(e))
        raise QueryTimeoutError(
            f"Athena query {execution_id} did not finish within {self.max_wait:g}s",
            plugin_name=self.name,
        )

    def _fetch_results(self, client: Any, execution_id: str) -> QueryResult:
        columns: List[ColumnInfo] = []
        rows: List[Dict[str, Any]] = []
        kwargs = {"QueryExecutionId": execution_id}
        first_page = True

        while True:
            page = client.get_query_results(**kwargs)
            result_set = page["ResultSet"]
            if first_page:
                columns = [
                    ColumnInfo(
                        name=col["Name"],
                        type=normalize_type(col.get("Type")),
                        nullable=col.get("Nullable", "UNKNOWN") != "NOT_NULL",
                    )
                    for col in result_set.get("ResultSetMetadata", {}).get("ColumnInfo", [])
                ]

            raw_rows = result_set.get("Rows", [])
            names = [c.name for c in columns]
            for index, raw in enumerate(raw_rows):
                values = [cell.get("VarCharValue") for cell in raw.get("Data", [])]
                # SELECT results repeat the column names as the first row
                if first_page and index == 0 and values == names:
                    continue
                rows.append({
                    column.name: _convert(values[i] if i < len(values) else None, column.type)
                    for i, column in enumerate(columns)
                })

            first_page = False
            next_token = page.get("NextToken")
            if not next_token:
                break
            kwargs["NextToken"] = next_token

        return build_result(rows, columns, query_id=execution_id)

    async def _get_tables(self, connection: Connection, database: Optional[str]) -> List[TableInfo]:
        return await asyncio.to_thread(
            self._list_table_metadata,
            connection.handle.resource,
            connection.config.get("catalog") or "AwsDataCatalog",
            database or connection.config["database"],
        )

    def _list_table_metadata(self, client: Any, catalog: str, database: str) -> List[TableInfo]:
        tables: List[TableInfo] = []
        kwargs = {"CatalogName": catalog, "DatabaseName": database}
        while True:
            page = client.list_table_metadata(**kwargs)
            for metadata in page.get("TableMetadataList", []):
                columns = _metadata_columns(metadata)
                if metadata.get("TableType") == "VIRTUAL_VIEW":
                    tables.append(ViewInfo(name=metadata["Name"], schema_name=database, columns=columns))
                else:
                    tables.append(TableInfo(name=metadata["Name"], schema_name=database, columns=columns))
            if not page.get("NextToken"):
                return tables
            kwargs["NextToken"] = page["NextToken"]

    async def _get_columns(self, connection: Connection, table: str) -> List[ColumnInfo]:
        database = connection.config["database"]
        if "." in table:
            database, table = table.rsplit(".", 1)
        response = await asyncio.to_thread(
            connection.handle.resource.get_table_metadata,
            CatalogName=connection.config.get("catalog") or "AwsDataCatalog",
            DatabaseName=database,
            TableName=table,
        )
        return _metadata_columns(response["TableMetadata"])
