#!/usr/bin/env python3
"""
Walkthrough of the Datasource Hub service against a local SQLite file.

Registers the default catalog, validates a configuration, connects, runs a
few queries and introspects the schema.
"""

import asyncio
import tempfile
from pathlib import Path

from datasource_hub.adapters.registry import create_registry
from datasource_hub.core.service import DataSourceService
from datasource_hub.exceptions import ConfigurationValidationError
from datasource_hub.logging_setup import configure_logging


async def main():
    configure_logging()
    service = DataSourceService(create_registry())

    print("Available plugins:")
    for descriptor in service.list_plugins():
        print(f"  {descriptor.name:<16} {descriptor.category.value:<18} {descriptor.display_name}")

    # An invalid config is rejected before any connection attempt
    try:
        await service.connect("sqlite", {"timeout": -1})
    except ConfigurationValidationError as e:
        print(f"\nRejected config: {e.errors}")

    db_path = Path(tempfile.mkdtemp()) / "sales.db"
    connection = await service.connect("sqlite", {"filename": str(db_path)})
    print(f"\nConnected: {connection!r}")

    try:
        await service.execute_query(
            connection,
            "CREATE TABLE sales (id INTEGER PRIMARY KEY, product TEXT NOT NULL, amount REAL)",
        )
        for product, amount in [("A", 100.0), ("B", 150.5), ("C", 200.25)]:
            await service.execute_query(
                connection,
                "INSERT INTO sales (product, amount) VALUES (:product, :amount)",
                {"product": product, "amount": amount},
            )

        result = await service.execute_query(connection, "SELECT product, amount FROM sales ORDER BY amount DESC")
        print(f"\n{result.row_count} rows in {result.execution_time_ms} ms")
        for row in result.rows:
            print(f"  {row}")

        schema = await service.get_schema(connection)
        for table in schema.tables:
            columns = ", ".join(f"{c.name}:{c.type}" for c in table.columns or [])
            print(f"\nTable {table.name}({columns})")
    finally:
        await service.disconnect(connection)
        print(f"\nDisconnected: {connection!r}")


if __name__ == "__main__":
    asyncio.run(main())
