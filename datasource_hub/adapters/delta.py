"""
Delta Lake table on S3.

The table state is reconstructed from the ``_delta_log`` directory: the
latest single-file checkpoint (if any) plus every later JSON commit. Reads
scan the active Parquet files with pandas, no Spark runtime required.
"""

import asyncio
import json
import posixpath
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import unquote

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

from .base import DATA_REQUESTS, BasePlugin
from .connection import Connection, StatelessHandle
from .normalization import build_result, frame_to_result, normalize_type
from .requests import ListRequest, ReadRequest
from .storage import ClientFactory, aws_properties, boto3_client_factory, close_client, read_frame

logger = structlog.get_logger(__name__)

_COMMIT_FILE = re.compile(r"(\d{20})\.json$")
_CHECKPOINT_FILE = re.compile(r"(\d{20})\.checkpoint\.parquet$")


def _plain(value: Any) -> Any:
    """Turn pyarrow-decoded checkpoint values into plain dicts and lists.

    Parquet maps arrive as lists of (key, value) pairs and arrays as ndarrays.
    """
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if hasattr(value, "tolist") and not isinstance(value, (str, bytes)):
        value = value.tolist()
    if isinstance(value, (list, tuple)):
        if value and all(isinstance(item, tuple) and len(item) == 2 for item in value):
            return {k: _plain(v) for k, v in value}
        return [_plain(item) for item in value]
    return value


def split_s3_path(path: str) -> Tuple[str, str]:
    """``s3://bucket/a/b/`` -> (``bucket``, ``a/b``)."""
    if not path.startswith("s3://"):
        raise ValueError(f"Not an S3 path: {path}")
    bucket, _, prefix = path[len("s3://"):].partition("/")
    if not bucket:
        raise ValueError(f"S3 path has no bucket: {path}")
    return bucket, prefix.strip("/")


def _partition_values(add: Dict[str, Any]) -> Dict[str, Any]:
    values = add.get("partitionValues")
    return dict(values) if values is not None else {}


@dataclass
class DeltaSnapshot:
    """Active files and schema of a Delta table at one version."""
    version: int = -1
    columns: List[ColumnInfo] = field(default_factory=list)
    partition_columns: List[str] = field(default_factory=list)
    files: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def apply(self, action: Dict[str, Any]) -> None:
        if "metaData" in action and action["metaData"]:
            metadata = action["metaData"]
            schema = json.loads(metadata.get("schemaString") or "{}")
            self.columns = [
                ColumnInfo(
                    name=f["name"],
                    type=normalize_type(f.get("type")),
                    nullable=f.get("nullable", True),
                )
                for f in schema.get("fields", [])
            ]
            columns = metadata.get("partitionColumns")
            self.partition_columns = list(columns) if columns is not None else []
        if "add" in action and action["add"]:
            add = action["add"]
            self.files[unquote(add["path"])] = add
        if "remove" in action and action["remove"]:
            self.files.pop(unquote(action["remove"]["path"]), None)

    @property
    def row_count(self) -> Optional[int]:
        total = 0
        for add in self.files.values():
            stats = add.get("stats")
            if not stats:
                return None
            if isinstance(stats, str):
                stats = json.loads(stats)
            if "numRecords" not in stats:
                return None
            total += stats["numRecords"]
        return total


class DeltaTableAWSPlugin(BasePlugin):
    """Read-only access to a Delta Lake table stored in S3."""

    name = "delta_table_aws"
    display_name = "Delta Lake (AWS)"
    category = PluginCategory.DATA_LAKES
    version = "1.0.0"
    description = "Delta Lake tables stored on Amazon S3"
    author = "Datasource Hub"
    license = "MIT"
    config_schema = ConfigurationSchema(
        properties=aws_properties(
            s3_path=SchemaProperty(type="string", title="S3 Path to Delta Table", pattern=r"^s3://[^/]+"),
        ),
        required=["s3_path", "region", "access_key_id", "secret_access_key"],
        additional_properties=False,
    )
    capabilities = PluginCapabilities(supports_streaming=False)
    supported_requests = DATA_REQUESTS

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self._client_factory = client_factory or boto3_client_factory

    async def _open(self, config: Dict[str, Any]) -> StatelessHandle:
        split_s3_path(config["s3_path"])
        client = await asyncio.to_thread(self._client_factory, "s3", config)
        return StatelessHandle(client, closer=close_client)

    async def probe(self, connection: Connection) -> None:
        snapshot = await self._snapshot(connection)
        if snapshot.version < 0:
            raise QueryExecutionError(
                f"No Delta transaction log under {connection.config['s3_path']}",
                plugin_name=self.name,
            )

    async def _snapshot(self, connection: Connection) -> DeltaSnapshot:
        bucket, prefix = split_s3_path(connection.config["s3_path"])
        return await asyncio.to_thread(self._load_snapshot, connection.handle.resource, bucket, prefix)

    def _load_snapshot(self, client: Any, bucket: str, prefix: str) -> DeltaSnapshot:
        log_prefix = posixpath.join(prefix, "_delta_log/") if prefix else "_delta_log/"
        keys = list(self._iter_keys(client, bucket, log_prefix))

        commits = {}
        checkpoints = {}
        for key in keys:
            name = posixpath.basename(key)
            if _COMMIT_FILE.fullmatch(name):
                commits[int(name[:20])] = key
            elif _CHECKPOINT_FILE.fullmatch(name):
                checkpoints[int(name[:20])] = key

        snapshot = DeltaSnapshot()
        start = 0
        if checkpoints:
            version = max(checkpoints)
            data = client.get_object(Bucket=bucket, Key=checkpoints[version])["Body"].read()
            frame = read_frame(data, "parquet")
            for action in self._checkpoint_actions(frame):
                snapshot.apply(action)
            snapshot.version = version
            start = version + 1

        for version in sorted(v for v in commits if v >= start):
            body = client.get_object(Bucket=bucket, Key=commits[version])["Body"].read().decode("utf-8")
            for line in body.splitlines():
                if line.strip():
                    snapshot.apply(json.loads(line))
            snapshot.version = version

        logger.debug(
            "Loaded Delta snapshot",
            plugin=self.name,
            bucket=bucket,
            version=snapshot.version,
            files=len(snapshot.files),
        )
        return snapshot

    @staticmethod
    def _checkpoint_actions(frame: pd.DataFrame) -> Iterable[Dict[str, Any]]:
        present = [c for c in ("metaData", "add", "remove") if c in frame.columns]
        for record in frame[present].to_dict(orient="records"):
            yield {k: _plain(v) for k, v in record.items() if isinstance(v, dict)}

    @staticmethod
    def _iter_keys(client: Any, bucket: str, prefix: str) -> Iterable[str]:
        kwargs = {"Bucket": bucket, "Prefix": prefix}
        while True:
            page = client.list_objects_v2(**kwargs)
            for obj in page.get("Contents", []):
                yield obj["Key"]
            if not page.get("IsTruncated"):
                return
            kwargs["ContinuationToken"] = page["NextContinuationToken"]

    async def _execute(self, connection: Connection, client: Any, request: Any) -> QueryResult:
        snapshot = await self._snapshot(connection)
        query_id = f"delta-v{snapshot.version}-{uuid.uuid4().hex}"

        if isinstance(request, ListRequest):
            rows = [
                {
                    "path": path,
                    "size": add.get("size"),
                    "modification_time": add.get("modificationTime"),
                    "partition_values": _partition_values(add),
                }
                for path, add in sorted(snapshot.files.items())
                if not request.prefix or path.startswith(request.prefix)
            ]
            if request.max_keys:
                rows = rows[:request.max_keys]
            return build_result(rows, ["path", "size", "modification_time", "partition_values"], query_id=query_id)

        bucket, prefix = split_s3_path(connection.config["s3_path"])
        frame = await asyncio.to_thread(self._scan, client, bucket, prefix, snapshot, request)
        scanned = frame_to_result(frame)
        return build_result(scanned.rows, snapshot.columns or scanned.columns, query_id=query_id)

    def _scan(self, client: Any, bucket: str, prefix: str, snapshot: DeltaSnapshot, request: ReadRequest) -> pd.DataFrame:
        frames = []
        remaining = request.limit
        for path, add in sorted(snapshot.files.items()):
            if request.key and not path.startswith(request.key):
                continue
            key = posixpath.join(prefix, path) if prefix else path
            frame = read_frame(client.get_object(Bucket=bucket, Key=key)["Body"].read(), "parquet")
            for column, value in _partition_values(add).items():
                if column not in frame.columns:
                    frame[column] = value
            if remaining is not None:
                frame = frame.head(remaining)
                remaining -= len(frame)
            frames.append(frame)
            if remaining is not None and remaining <= 0:
                break

        if not frames:
            return pd.DataFrame(columns=[c.name for c in snapshot.columns])
        return pd.concat(frames, ignore_index=True)

    async def _get_tables(self, connection: Connection, database: Optional[str]) -> List[TableInfo]:
        snapshot = await self._snapshot(connection)
        bucket, prefix = split_s3_path(connection.config["s3_path"])
        name = posixpath.basename(prefix) or bucket
        return [TableInfo(name=name, schema_name=bucket, columns=snapshot.columns, row_count=snapshot.row_count)]

    async def _get_columns(self, connection: Connection, table: str) -> List[ColumnInfo]:
        snapshot = await self._snapshot(connection)
        return snapshot.columns
