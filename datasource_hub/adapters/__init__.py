"""
Data source plugins and the framework they plug into.

Provides the plugin contract, connection handles, typed requests, the
configuration validator and the plugin registry, along with SQLAlchemy
based relational plugins.
"""

from .base import BasePlugin, DataSourcePlugin
from .connection import ClientHandle, Connection, ConnectionHandle, HandleKind, PoolHandle, StatelessHandle
from .registry import PluginRegistry, ResettablePluginRegistry, create_registry, create_test_registry
from .requests import ListRequest, ReadRequest, SqlRequest
from .sqlalchemy_connector import SQLAlchemyPlugin
from .validator import validate

__all__ = [
    "BasePlugin",
    "DataSourcePlugin",
    "ClientHandle",
    "Connection",
    "ConnectionHandle",
    "HandleKind",
    "PoolHandle",
    "StatelessHandle",
    "PluginRegistry",
    "ResettablePluginRegistry",
    "create_registry",
    "create_test_registry",
    "ListRequest",
    "ReadRequest",
    "SqlRequest",
    "SQLAlchemyPlugin",
    "validate",
]
