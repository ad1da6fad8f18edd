"""
Typed request variants accepted by ``execute_query``.

SQL backends take a plain statement; object stores and lake tables take
explicit list/read requests instead of an ad hoc JSON pseudo-language.
"""

from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from datasource_hub.exceptions import QueryExecutionError

Params = Union[Mapping[str, Any], Sequence[Any], None]


class SqlRequest(BaseModel):
    """A single SQL statement, optionally parameterized."""
    kind: Literal["sql"] = "sql"
    statement: str = Field(..., min_length=1)
    params: Optional[Union[Dict[str, Any], List[Any]]] = None

    def __str__(self) -> str:
        return self.statement


class ListRequest(BaseModel):
    """List objects (or tables) under a prefix."""
    kind: Literal["list"] = "list"
    prefix: Optional[str] = None
    max_keys: Optional[int] = Field(None, ge=1)

    def __str__(self) -> str:
        return f"LIST {self.prefix or ''}".strip()


class ReadRequest(BaseModel):
    """Read one object (or a whole table when ``key`` is omitted)."""
    kind: Literal["read"] = "read"
    key: Optional[str] = None
    format: Optional[Literal["csv", "parquet", "json", "text"]] = None
    limit: Optional[int] = Field(None, ge=1)

    def __str__(self) -> str:
        return f"READ {self.key or '*'}"


DataRequest = Annotated[Union[SqlRequest, ListRequest, ReadRequest], Field(discriminator="kind")]

_request_adapter = TypeAdapter(DataRequest)


def coerce_request(query: Any, params: Params = None) -> Union[SqlRequest, ListRequest, ReadRequest]:
    """
    Turn what a caller passed to ``execute_query`` into a typed request.

    Strings are SQL; mappings must carry a ``kind`` discriminator. ``params``
    bind into SQL requests only.
    """
    if isinstance(query, str):
        if not query.strip():
            raise QueryExecutionError("Query must not be empty", query_preview="")
        return SqlRequest(statement=query, params=_normalize_params(params))

    if isinstance(query, (SqlRequest, ListRequest, ReadRequest)):
        request = query
    elif isinstance(query, Mapping):
        try:
            request = _request_adapter.validate_python(dict(query))
        except ValidationError as e:
            raise QueryExecutionError(
                "Malformed data request",
                query_preview=str(dict(query))[:200],
                native_message=str(e),
                cause=e,
            ) from e
    else:
        raise QueryExecutionError(
            f"Unsupported query type: {type(query).__name__}",
            query_preview=repr(query)[:200],
        )

    if params is None:
        return request
    if not isinstance(request, SqlRequest):
        raise QueryExecutionError(
            f"Parameters are not accepted by {request.kind} requests",
            query_preview=str(request)[:200],
        )
    return request.model_copy(update={"params": _normalize_params(params)})


def _normalize_params(params: Params) -> Optional[Union[Dict[str, Any], List[Any]]]:
    if params is None:
        return None
    if isinstance(params, Mapping):
        return dict(params)
    if isinstance(params, (str, bytes)):
        raise QueryExecutionError("Query parameters must be a mapping or a sequence")
    return list(params)
