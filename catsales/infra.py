"""Run bookkeeping tables.

Centralizes creation and persistence for the internal tables written next
to the sales data when a run is saved to a DuckDB file:
- _trace (+ _trace_seq)
- _run_meta
"""

from __future__ import annotations

import importlib.metadata
import json
import platform
import sys
import time
from typing import Any

import duckdb

from .catalog import get_column_schema, table_exists


def init_infra(conn: duckdb.DuckDBPyConnection) -> None:
    """Ensure all internal tables exist."""
    ensure_trace(conn)
    ensure_run_meta(conn)


# ---------------------------------------------------------------------------
# Trace
# ---------------------------------------------------------------------------


def ensure_trace(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute("CREATE SEQUENCE IF NOT EXISTS _trace_seq")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS _trace (
            id INTEGER DEFAULT nextval('_trace_seq'),
            timestamp TIMESTAMP DEFAULT current_timestamp,
            source VARCHAR,
            query VARCHAR NOT NULL,
            success BOOLEAN NOT NULL,
            error VARCHAR,
            row_count INTEGER,
            elapsed_ms DOUBLE
        )
        """
    )


def has_trace(conn: duckdb.DuckDBPyConnection) -> bool:
    return table_exists(conn, "_trace")


def log_trace(
    conn: duckdb.DuckDBPyConnection,
    query: str,
    success: bool,
    *,
    error: str | None = None,
    row_count: int | None = None,
    elapsed_ms: float | None = None,
    source: str | None = None,
) -> None:
    """Log a SQL query execution to the _trace table."""
    conn.execute(
        """
        INSERT INTO _trace (source, query, success, error, row_count, elapsed_ms)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        [source, query, success, error, row_count, elapsed_ms],
    )


# ---------------------------------------------------------------------------
# Run metadata
# ---------------------------------------------------------------------------


def ensure_run_meta(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS _run_meta (
            key VARCHAR PRIMARY KEY,
            value VARCHAR
        )
        """
    )


def persist_run_meta(
    conn: duckdb.DuckDBPyConnection,
    *,
    engine: str,
    on_invalid: str,
    numeric: str,
    input_path: str | None = None,
    table_name: str | None = None,
    record_count: int | None = None,
    skipped_count: int | None = None,
    category_count: int | None = None,
) -> None:
    """Write run-level metadata to _run_meta (replacing any previous run)."""
    ensure_run_meta(conn)
    conn.execute("DELETE FROM _run_meta")

    try:
        version = importlib.metadata.version("catsales")
    except importlib.metadata.PackageNotFoundError:
        version = "unknown"

    rows: list[tuple[str, str]] = [
        ("meta_version", "1"),
        ("created_at_utc", time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())),
        ("catsales_version", version),
        ("python_version", sys.version.split()[0]),
        ("platform", platform.platform()),
        (
            "run",
            json.dumps(
                {"engine": engine, "on_invalid": on_invalid, "numeric": numeric},
                sort_keys=True,
            ),
        ),
    ]

    if input_path:
        rows.append(("input_path", input_path))
    if table_name:
        rows.append(("input_table", table_name))
        rows.append(
            (
                "input_schema",
                json.dumps(
                    [
                        {"name": name, "type": dtype}
                        for name, dtype in get_column_schema(conn, table_name)
                    ]
                ),
            )
        )

    counts: dict[str, Any] = {}
    if record_count is not None:
        counts["records"] = record_count
    if skipped_count is not None:
        counts["skipped"] = skipped_count
    if category_count is not None:
        counts["categories"] = category_count
    if counts:
        rows.append(("counts", json.dumps(counts, sort_keys=True)))

    conn.executemany("INSERT INTO _run_meta (key, value) VALUES (?, ?)", rows)


def read_run_meta(conn: duckdb.DuckDBPyConnection) -> dict[str, str]:
    """Read run metadata. Returns empty dict if the table doesn't exist."""
    try:
        return dict(conn.execute("SELECT key, value FROM _run_meta").fetchall())
    except duckdb.Error:
        return {}
