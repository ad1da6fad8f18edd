"""
Tests for the Athena plugin against a scripted client.
"""

import pytest

from datasource_hub.adapters.athena import AthenaPlugin
from datasource_hub.exceptions import QueryExecutionError, QueryTimeoutError

from conftest import AWS_CONFIG, fake_factory


def _row(*values):
    return {"Data": [{} if v is None else {"VarCharValue": v} for v in values]}


class FakeAthenaClient:
    """Replays a fixed sequence of query states and result pages."""

    def __init__(self, states=("QUEUED", "RUNNING", "SUCCEEDED"), pages=None, reason=""):
        self.states = list(states)
        self.pages = pages or []
        self.reason = reason
        self.started = []
        self.stopped = []
        self.result_requests = []
        self.closed = False

    def start_query_execution(self, **kwargs):
        self.started.append(kwargs)
        return {"QueryExecutionId": "qe-1"}

    def get_query_execution(self, QueryExecutionId):
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        status = {"State": state}
        if self.reason:
            status["StateChangeReason"] = self.reason
        return {"QueryExecution": {"QueryExecutionId": QueryExecutionId, "Status": status}}

    def stop_query_execution(self, QueryExecutionId):
        self.stopped.append(QueryExecutionId)

    def get_query_results(self, QueryExecutionId, NextToken=None):
        self.result_requests.append(NextToken)
        index = 0 if NextToken is None else int(NextToken)
        page = dict(self.pages[index])
        if index + 1 < len(self.pages):
            page["NextToken"] = str(index + 1)
        return page

    def list_table_metadata(self, CatalogName, DatabaseName, NextToken=None):
        if NextToken is None:
            return {
                "TableMetadataList": [
                    {
                        "Name": "orders",
                        "TableType": "EXTERNAL_TABLE",
                        "Columns": [{"Name": "id", "Type": "bigint"}],
                        "PartitionKeys": [{"Name": "dt", "Type": "string"}],
                    },
                ],
                "NextToken": "2",
            }
        return {"TableMetadataList": [{"Name": "daily", "TableType": "VIRTUAL_VIEW", "Columns": []}]}

    def get_table_metadata(self, CatalogName, DatabaseName, TableName):
        self.last_metadata_request = (CatalogName, DatabaseName, TableName)
        return {
            "TableMetadata": {
                "Name": TableName,
                "Columns": [{"Name": "id", "Type": "bigint"}, {"Name": "total", "Type": "decimal(10,2)"}],
            }
        }

    def close(self):
        self.closed = True


COLUMN_INFO = {
    "ResultSetMetadata": {
        "ColumnInfo": [
            {"Name": "id", "Type": "integer", "Nullable": "NOT_NULL"},
            {"Name": "amount", "Type": "double"},
            {"Name": "paid", "Type": "boolean"},
            {"Name": "note", "Type": "varchar"},
        ]
    }
}


def _pages():
    return [
        {"ResultSet": {**COLUMN_INFO, "Rows": [_row("id", "amount", "paid", "note"), _row("1", "9.5", "true", None)]}},
        {"ResultSet": {"Rows": [_row("2", "1", "false", "late")]}},
    ]


@pytest.fixture
def config():
    return {
        **AWS_CONFIG,
        "database": "sales",
        "output_location": "s3://query-results/athena/",
    }


def _plugin(client, **kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("max_wait", 5)
    return AthenaPlugin(client_factory=fake_factory(client), **kwargs)


@pytest.mark.asyncio
async def test_query_polls_then_pages_results(config):
    client = FakeAthenaClient(pages=_pages())
    plugin = _plugin(client)
    connection = await plugin.connect(config)

    result = await plugin.execute_query(connection, "SELECT * FROM orders")

    assert result.query_id == "qe-1"
    assert result.rows == [
        {"id": 1, "amount": 9.5, "paid": True, "note": None},
        {"id": 2, "amount": 1.0, "paid": False, "note": "late"},
    ]
    assert [c.type for c in result.columns] == ["integer", "number", "boolean", "string"]
    assert result.columns[0].nullable is False
    assert client.result_requests == [None, "1"]


@pytest.mark.asyncio
async def test_execution_context_and_positional_params(config):
    client = FakeAthenaClient(pages=_pages())
    plugin = _plugin(client)
    connection = await plugin.connect({**config, "workgroup": "analysts"})

    await plugin.execute_query(connection, "SELECT * FROM orders WHERE id = ?", [7])

    started = client.started[0]
    assert started["QueryExecutionContext"] == {"Database": "sales", "Catalog": "AwsDataCatalog"}
    assert started["ResultConfiguration"] == {"OutputLocation": "s3://query-results/athena/"}
    assert started["WorkGroup"] == "analysts"
    assert started["ExecutionParameters"] == ["7"]


@pytest.mark.asyncio
async def test_named_params_rejected(config):
    client = FakeAthenaClient(pages=_pages())
    plugin = _plugin(client)
    connection = await plugin.connect(config)

    with pytest.raises(QueryExecutionError):
        await plugin.execute_query(connection, "SELECT :x", {"x": 1})
    assert client.started == []


@pytest.mark.asyncio
async def test_failed_query_carries_reason(config):
    client = FakeAthenaClient(states=("RUNNING", "FAILED"), reason="SYNTAX_ERROR: line 1:8")
    plugin = _plugin(client)
    connection = await plugin.connect(config)

    with pytest.raises(QueryExecutionError) as exc:
        await plugin.execute_query(connection, "SELEC 1")

    assert exc.value.native_message == "SYNTAX_ERROR: line 1:8"
    assert exc.value.query_preview == "SELEC 1"


@pytest.mark.asyncio
async def test_timeout_stops_query(config):
    client = FakeAthenaClient(states=("RUNNING",))
    plugin = _plugin(client, poll_interval=0.01, max_wait=0.05)
    connection = await plugin.connect(config)

    with pytest.raises(QueryTimeoutError) as exc:
        await plugin.execute_query(connection, "SELECT * FROM huge")

    assert exc.value.error_code == "QUERY_TIMEOUT"
    assert client.stopped == ["qe-1"]


@pytest.mark.asyncio
async def test_tables_and_views_from_catalog(config):
    client = FakeAthenaClient()
    plugin = _plugin(client)
    connection = await plugin.connect(config)

    schema = await plugin.get_schema(connection)

    assert [t.name for t in schema.tables] == ["orders"]
    assert [c.name for c in schema.tables[0].columns] == ["id", "dt"]
    assert [v.name for v in schema.views] == ["daily"]
    assert schema.tables[0].schema_name == "sales"


@pytest.mark.asyncio
async def test_columns_accept_qualified_names(config):
    client = FakeAthenaClient()
    plugin = _plugin(client)
    connection = await plugin.connect(config)

    columns = await plugin.get_columns(connection, "archive.orders")

    assert client.last_metadata_request == ("AwsDataCatalog", "archive", "orders")
    assert [(c.name, c.type) for c in columns] == [("id", "integer"), ("total", "number")]


@pytest.mark.asyncio
async def test_test_connection_runs_probe_and_closes(config):
    pages = [{"ResultSet": {
        "ResultSetMetadata": {"ColumnInfo": [{"Name": "_col0", "Type": "integer"}]},
        "Rows": [_row("_col0"), _row("1")],
    }}]
    client = FakeAthenaClient(pages=pages)
    plugin = _plugin(client)

    assert await plugin.test_connection(config) is True
    assert client.started[0]["QueryString"] == "SELECT 1"
    assert client.closed
