#!/usr/bin/env python3
"""
Entry point for the Datasource Hub service.

Usage:
    datasource-hub                 # Start the API server
    datasource-hub --plugins       # Show which default plugins would load
    datasource-hub --port 9000     # Override the configured port
"""

import argparse

import uvicorn

from datasource_hub.adapters.registry import get_plugin_statuses
from datasource_hub.settings import settings


def show_plugins() -> None:
    """Print enable flags and driver availability for the default catalog."""
    for name, status in get_plugin_statuses(settings).items():
        state = "load" if status.should_load else ("disabled" if not status.enabled else "missing drivers")
        missing = f" ({', '.join(status.missing)})" if status.missing else ""
        print(f"  {name:<16} {state}{missing}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Datasource Hub - one contract for many data sources")
    parser.add_argument("--host", default=settings.api_host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Bind port")
    parser.add_argument("--reload", action="store_true", default=settings.debug, help="Reload on code changes")
    parser.add_argument("--plugins", action="store_true", help="List default plugins and exit")
    args = parser.parse_args()

    if args.plugins:
        show_plugins()
        return

    uvicorn.run(
        "datasource_hub.api.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
