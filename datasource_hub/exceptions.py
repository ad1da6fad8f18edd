"""
Structured exception hierarchy for the datasource framework.

Every error carries a stable ``error_code`` and a context dictionary so the
API tier can translate it without string matching. Catalog and validation
errors surface synchronously; connection and query errors surface from the
async contract methods; introspection errors never leave a plugin.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class DataSourceHubError(Exception):
    """Base class for all framework errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "DATASOURCE_ERROR",
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


class InvalidPluginInterface(DataSourceHubError):
    """Raised when a candidate plugin does not satisfy the plugin contract."""

    def __init__(self, message: str, plugin_name: Optional[str] = None, problems: Optional[List[str]] = None):
        self.problems = list(problems or [])
        super().__init__(
            message,
            error_code="INVALID_PLUGIN_INTERFACE",
            context={"plugin": plugin_name, "problems": self.problems},
        )


class PluginNotFound(DataSourceHubError):
    """Raised by any call that references an unregistered plugin name."""

    def __init__(self, plugin_name: str, available: Optional[List[str]] = None):
        self.plugin_name = plugin_name
        super().__init__(
            f"Data source plugin not found: {plugin_name}",
            error_code="PLUGIN_NOT_FOUND",
            context={"plugin": plugin_name, "available": sorted(available or [])},
        )


class ConfigurationValidationError(DataSourceHubError):
    """Raised before any I/O when a configuration violates the plugin schema."""

    def __init__(self, plugin_name: str, errors: List[str], warnings: Optional[List[str]] = None):
        self.plugin_name = plugin_name
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(
            f"Invalid configuration for plugin {plugin_name}: {'; '.join(self.errors)}",
            error_code="CONFIGURATION_INVALID",
            context={"plugin": plugin_name, "errors": self.errors, "warnings": self.warnings},
        )


class DataSourceConnectionError(DataSourceHubError):
    """Raised by connect()/disconnect() on network, auth or driver failure."""

    def __init__(self, message: str, plugin_name: Optional[str] = None, cause: Optional[BaseException] = None):
        self.plugin_name = plugin_name
        super().__init__(
            message,
            error_code="CONNECTION_FAILED",
            context={"plugin": plugin_name},
            cause=cause,
        )


class QueryExecutionError(DataSourceHubError):
    """Raised by execute_query(); carries a truncated query and the backend message."""

    error_code_value = "QUERY_FAILED"

    def __init__(
        self,
        message: str,
        plugin_name: Optional[str] = None,
        query_preview: Optional[str] = None,
        native_message: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.plugin_name = plugin_name
        self.query_preview = query_preview
        self.native_message = native_message
        super().__init__(
            message,
            error_code=self.error_code_value,
            context={
                "plugin": plugin_name,
                "query_preview": query_preview,
                "native_message": native_message,
            },
            cause=cause,
        )


class QueryTimeoutError(QueryExecutionError):
    """A backend did not finish within the plugin's wait ceiling."""

    error_code_value = "QUERY_TIMEOUT"


class UnsupportedRequestError(QueryExecutionError):
    """A plugin received a request variant it cannot serve."""

    error_code_value = "UNSUPPORTED_REQUEST"


class IntrospectionError(DataSourceHubError):
    """Internal signal for failed metadata lookups; plugins downgrade it to empty results."""

    def __init__(self, message: str, plugin_name: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(
            message,
            error_code="INTROSPECTION_FAILED",
            context={"plugin": plugin_name},
            cause=cause,
        )
