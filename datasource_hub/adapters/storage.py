"""
Amazon S3 storage plugin.

Objects are addressed with ListRequest / ReadRequest. CSV, Parquet and JSON
objects are parsed into rows through pandas; anything else comes back as a
single key/content row.
"""

import asyncio
import io
import json
import uuid
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import structlog

from datasource_hub.exceptions import QueryExecutionError
from datasource_hub.models import (
    ColumnInfo,
    ConfigurationSchema,
    PluginCapabilities,
    PluginCategory,
    QueryResult,
    SchemaProperty,
    TableInfo,
)
from datasource_hub.settings import settings

from .base import DATA_REQUESTS, BasePlugin
from .connection import Connection, StatelessHandle
from .normalization import build_result, frame_to_result
from .requests import ListRequest, ReadRequest

logger = structlog.get_logger(__name__)

ClientFactory = Callable[[str, Dict[str, Any]], Any]

LIST_COLUMNS = [
    ColumnInfo(name="key", type="string", nullable=False),
    ColumnInfo(name="size", type="integer"),
    ColumnInfo(name="last_modified", type="datetime"),
    ColumnInfo(name="etag", type="string"),
    ColumnInfo(name="storage_class", type="string"),
]

_EXTENSION_FORMATS = {
    ".csv": "csv",
    ".tsv": "csv",
    ".parquet": "parquet",
    ".json": "json",
    ".jsonl": "json",
    ".ndjson": "json",
}


def aws_properties(**extra: SchemaProperty) -> Dict[str, SchemaProperty]:
    """Credential and region properties shared by the AWS plugins."""
    properties = {
        "region": SchemaProperty(type="string", title="AWS Region", default="us-east-1"),
        "access_key_id": SchemaProperty(type="string", title="Access Key ID"),
        "secret_access_key": SchemaProperty(type="password", title="Secret Access Key", format="password"),
        "session_token": SchemaProperty(type="password", title="Session Token", format="password"),
        "endpoint_url": SchemaProperty(type="string", title="Custom Endpoint", description="For S3-compatible services"),
    }
    properties.update(extra)
    return properties


def boto3_client_factory(service: str, config: Dict[str, Any]) -> Any:
    """Create a boto3 client from plugin configuration."""
    import boto3

    session = boto3.Session(
        aws_access_key_id=config.get("access_key_id"),
        aws_secret_access_key=config.get("secret_access_key"),
        aws_session_token=config.get("session_token"),
        region_name=config.get("region") or "us-east-1",
    )
    kwargs = {}
    if config.get("endpoint_url") and service == "s3":
        kwargs["endpoint_url"] = config["endpoint_url"]
    return session.client(service, **kwargs)


def close_client(client: Any) -> None:
    close = getattr(client, "close", None)
    if callable(close):
        close()


def detect_format(key: str, explicit: Optional[str] = None) -> str:
    if explicit:
        return explicit
    lowered = key.lower()
    for extension, fmt in _EXTENSION_FORMATS.items():
        if lowered.endswith(extension):
            return fmt
    return "text"


def read_frame(data: bytes, fmt: str, key: str = "", limit: Optional[int] = None) -> Optional[pd.DataFrame]:
    """
    Parse object bytes into a DataFrame.

    Returns None for formats that have no tabular reading.
    """
    if fmt == "csv":
        sep = "\t" if key.lower().endswith(".tsv") else ","
        return pd.read_csv(io.BytesIO(data), sep=sep, nrows=limit)
    if fmt == "parquet":
        frame = pd.read_parquet(io.BytesIO(data))
        return frame.head(limit) if limit else frame
    if fmt == "json":
        text = data.decode("utf-8")
        if key.lower().endswith((".jsonl", ".ndjson")):
            records = [json.loads(line) for line in text.splitlines() if line.strip()]
        else:
            parsed = json.loads(text)
            records = parsed if isinstance(parsed, list) else [parsed]
        if not all(isinstance(r, dict) for r in records):
            return None
        frame = pd.DataFrame.from_records(records)
        return frame.head(limit) if limit else frame
    return None


class S3Plugin(BasePlugin):
    """Amazon S3 (and S3-compatible) object storage."""

    name = "s3"
    display_name = "Amazon S3"
    category = PluginCategory.STORAGE_SERVICES
    version = "1.0.0"
    description = "Connect to Amazon S3 storage"
    author = "Datasource Hub"
    license = "MIT"
    config_schema = ConfigurationSchema(
        properties=aws_properties(
            bucket=SchemaProperty(type="string", title="Bucket Name", min_length=3, max_length=63),
            prefix=SchemaProperty(type="string", title="Object Prefix"),
        ),
        required=["region", "access_key_id", "secret_access_key", "bucket"],
        additional_properties=False,
    )
    capabilities = PluginCapabilities(max_concurrent_connections=20)
    supported_requests = DATA_REQUESTS
    schema_includes_columns = False

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self._client_factory = client_factory or boto3_client_factory

    async def _open(self, config: Dict[str, Any]) -> StatelessHandle:
        client = await asyncio.to_thread(self._client_factory, "s3", config)
        return StatelessHandle(client, closer=close_client)

    async def probe(self, connection: Connection) -> None:
        client = connection.handle.resource
        await asyncio.to_thread(client.list_objects_v2, Bucket=connection.config["bucket"], MaxKeys=1)

    async def _execute(self, connection: Connection, client: Any, request: Any) -> QueryResult:
        if isinstance(request, ListRequest):
            rows = await asyncio.to_thread(
                self._list_objects,
                client,
                connection.config["bucket"],
                request.prefix if request.prefix is not None else connection.config.get("prefix"),
                request.max_keys or settings.storage_max_keys,
            )
            return build_result(rows, LIST_COLUMNS, query_id=f"s3-list-{uuid.uuid4().hex}")
        return await asyncio.to_thread(self._read_object, client, connection.config["bucket"], request)

    def _list_objects(self, client: Any, bucket: str, prefix: Optional[str], max_keys: int) -> List[Dict[str, Any]]:
        kwargs = {"Bucket": bucket, "MaxKeys": max_keys}
        if prefix:
            kwargs["Prefix"] = prefix
        response = client.list_objects_v2(**kwargs)
        return [
            {
                "key": obj["Key"],
                "size": obj.get("Size"),
                "last_modified": obj.get("LastModified"),
                "etag": obj.get("ETag"),
                "storage_class": obj.get("StorageClass"),
            }
            for obj in response.get("Contents", [])
        ]

    def _read_object(self, client: Any, bucket: str, request: ReadRequest) -> QueryResult:
        if not request.key:
            raise QueryExecutionError(
                "S3 read requests need an object key",
                plugin_name=self.name,
                query_preview=str(request),
            )
        data = client.get_object(Bucket=bucket, Key=request.key)["Body"].read()
        fmt = detect_format(request.key, request.format)
        query_id = f"s3-read-{uuid.uuid4().hex}"

        frame = read_frame(data, fmt, request.key, request.limit)
        if frame is not None:
            logger.debug("Parsed object", plugin=self.name, key=request.key, format=fmt, rows=len(frame))
            return frame_to_result(frame, query_id=query_id)

        rows = [{"key": request.key, "content": data.decode("utf-8", errors="replace")}]
        return build_result(rows, query_id=query_id)

    async def _get_tables(self, connection: Connection, database: Optional[str]) -> List[TableInfo]:
        bucket = connection.config["bucket"]
        rows = await asyncio.to_thread(
            self._list_objects,
            connection.handle.resource,
            bucket,
            database if database is not None else connection.config.get("prefix"),
            settings.storage_max_keys,
        )
        return [TableInfo(name=row["key"], schema_name=bucket) for row in rows if not row["key"].endswith("/")]

    async def _get_columns(self, connection: Connection, table: str) -> List[ColumnInfo]:
        fmt = detect_format(table)
        if fmt == "text":
            return []
        request = ReadRequest(key=table, format=fmt, limit=settings.introspection_sample_rows)
        result = await asyncio.to_thread(self._read_object, connection.handle.resource, connection.config["bucket"], request)
        return result.columns
