"""
Live connection handles.

A Connection wraps exactly one ConnectionHandle. Handles come in three kinds
(pool-backed, single client, stateless HTTP client) and all of them expose
``released`` and an idempotent ``release()``, so the framework can assert that
resources were freed without knowing anything about the backend.
"""

import asyncio
import contextlib
import inspect
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, AsyncIterator, Callable, Mapping, Optional

import structlog

from datasource_hub.exceptions import DataSourceConnectionError

logger = structlog.get_logger(__name__)

Closer = Callable[[Any], Any]


class HandleKind(str, Enum):
    POOL = "pool"
    CLIENT = "client"
    STATELESS = "stateless"


class ConnectionHandle:
    """Opaque wrapper around a backend client, pool or stateless client."""

    kind: HandleKind

    def __init__(self, resource: Any, closer: Optional[Closer] = None):
        self._resource = resource
        self._closer = closer
        self._released = False

    @property
    def resource(self) -> Any:
        if self._released:
            raise DataSourceConnectionError("Connection handle has been released")
        return self._resource

    @property
    def released(self) -> bool:
        return self._released

    @contextlib.asynccontextmanager
    async def exclusive(self) -> AsyncIterator[Any]:
        """Yield the resource for one operation; pools and stateless clients need no lock."""
        yield self.resource

    async def release(self) -> None:
        """Free the underlying resource. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        resource, self._resource = self._resource, None
        if self._closer is None or resource is None:
            return
        result = self._closer(resource)
        if inspect.isawaitable(result):
            await result


class PoolHandle(ConnectionHandle):
    """A pool of N physical connections behind one logical Connection."""
    kind = HandleKind.POOL


class ClientHandle(ConnectionHandle):
    """A single physical connection; calls on it are serialized."""
    kind = HandleKind.CLIENT

    def __init__(self, resource: Any, closer: Optional[Closer] = None):
        super().__init__(resource, closer)
        self._lock = asyncio.Lock()

    @contextlib.asynccontextmanager
    async def exclusive(self) -> AsyncIterator[Any]:
        async with self._lock:
            yield self.resource


class StatelessHandle(ConnectionHandle):
    """An HTTP-style client with no session to tear down beyond dropping it."""
    kind = HandleKind.STATELESS


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Connection:
    """
    Live handle returned by a plugin's ``connect()``.

    Connected on creation; ``mark_disconnected()`` is terminal. A caller that
    needs to reconnect calls ``connect()`` again and gets a new ``id``.
    """

    def __init__(self, plugin_name: str, config: Mapping[str, Any], handle: ConnectionHandle):
        self.id = f"{plugin_name}-{uuid.uuid4().hex}"
        self.plugin_name = plugin_name
        self.config: Mapping[str, Any] = MappingProxyType(dict(config))
        self.handle = handle
        self.is_connected = True
        self.connected_at = _utcnow()
        self.last_activity = self.connected_at

    def __repr__(self) -> str:
        return (
            f"Connection(id={self.id!r}, plugin={self.plugin_name!r}, "
            f"kind={self.handle.kind.value}, connected={self.is_connected})"
        )

    @property
    def released(self) -> bool:
        return self.handle.released

    def touch(self) -> datetime:
        """Record activity; the timestamp strictly increases on every call."""
        now = _utcnow()
        if now <= self.last_activity:
            now = self.last_activity + timedelta(microseconds=1)
        self.last_activity = now
        return now

    def ensure_open(self) -> None:
        if not self.is_connected or self.handle.released:
            raise DataSourceConnectionError(
                f"Connection {self.id} is closed",
                plugin_name=self.plugin_name,
            )

    def mark_disconnected(self) -> None:
        if self.is_connected:
            logger.debug("Connection marked disconnected", connection_id=self.id, plugin=self.plugin_name)
        self.is_connected = False
