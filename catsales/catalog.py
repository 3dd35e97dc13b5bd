"""DuckDB catalog lookups for sales tables."""

from __future__ import annotations

import duckdb

# Bookkeeping tables (_trace, _run_meta) start with this prefix.
INTERNAL_PREFIX = "_"


def quote_ident(name: str) -> str:
    """Quote an identifier for DuckDB SQL."""
    return '"' + name.replace('"', '""') + '"'


def list_tables(conn: duckdb.DuckDBPyConnection) -> list[str]:
    """Return the names of the data tables of a run, skipping bookkeeping tables."""
    rows = conn.execute(
        "SELECT table_name FROM information_schema.tables "
        "WHERE table_type = 'BASE TABLE' AND NOT starts_with(table_name, ?) "
        "ORDER BY table_name",
        [INTERNAL_PREFIX],
    ).fetchall()
    return [name for (name,) in rows]


def table_exists(conn: duckdb.DuckDBPyConnection, table_name: str) -> bool:
    """Return True if a table or view named *table_name* exists."""
    rows = conn.execute(
        "SELECT 1 FROM information_schema.tables WHERE table_name = ?",
        [table_name],
    ).fetchall()
    return bool(rows)


def get_column_schema(
    conn: duckdb.DuckDBPyConnection, table_name: str
) -> list[tuple[str, str]]:
    """Column names and DuckDB types of *table_name*, in column order."""
    rows = conn.execute(
        """
        SELECT column_name, data_type
        FROM information_schema.columns
        WHERE table_name = ?
        ORDER BY ordinal_position
        """,
        [table_name],
    ).fetchall()
    return [(row[0], row[1]) for row in rows]


def get_column_names(conn: duckdb.DuckDBPyConnection, table_name: str) -> set[str]:
    return {name for name, _ in get_column_schema(conn, table_name)}


def count_rows(conn: duckdb.DuckDBPyConnection, table_name: str) -> int:
    (n,) = conn.execute(f"SELECT COUNT(*) FROM {quote_ident(table_name)}").fetchone()
    return n
