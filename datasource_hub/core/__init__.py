"""
Core service components.

Provides the data source service facade and credential redaction helpers.
The service is imported from ``datasource_hub.core.service`` directly since
it depends on the adapters package.
"""

from .redaction import preview_query, redact_config, scrub_message

__all__ = [
    "preview_query",
    "redact_config",
    "scrub_message",
]
