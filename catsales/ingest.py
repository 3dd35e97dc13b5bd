"""Ingestion module: load sales data into DuckDB or into record dicts.

Accepts Polars DataFrames, list[dict] (array of structs), or dict[str, list]
(struct of arrays). All are coerced to DataFrame before writing.

Also supports file-based inputs (csv, parquet, json/ndjson).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

import duckdb
import polars as pl

from .catalog import get_column_schema, quote_ident

log = logging.getLogger(__name__)

# Type alias for data a caller can hand to ingest_table
TableData = Any  # pl.DataFrame | list[dict] | dict[str, list]


SUPPORTED_FILE_EXTENSIONS = {
    ".csv": "csv",
    ".parquet": "parquet",
    ".json": "json",
    ".ndjson": "ndjson",
    ".jsonl": "ndjson",
}

DUCKDB_READERS = {
    "csv": "read_csv_auto",
    "parquet": "read_parquet",
    "json": "read_json_auto",
    "ndjson": "read_json_auto",
}

# Formats whose column types DuckDB guesses from the values.
INFERRED_FORMATS = {"csv", "json", "ndjson"}

_INTEGER_TEXT = r"[+-]?[0-9]+"


@dataclass(frozen=True)
class FileInput:
    path: Path
    format: str


def coerce_to_dataframe(data: TableData) -> pl.DataFrame:
    """Convert supported tabular formats to a Polars DataFrame.

    Accepted formats:
    - pl.DataFrame: returned as-is
    - list[dict]: array of structs, e.g. [{"a": 1, "b": 2}, ...]
    - dict[str, list]: struct of arrays, e.g. {"a": [1, 2], "b": [3, 4]}

    Raises TypeError for unsupported formats.
    """
    if isinstance(data, pl.DataFrame):
        return data
    if isinstance(data, list):
        return pl.DataFrame(data)
    if isinstance(data, dict):
        return pl.DataFrame(data)
    raise TypeError(
        f"Unsupported data type: {type(data).__name__}. "
        f"Expected DataFrame, list[dict], or dict[str, list]."
    )


def _normalize_path(path: Path, base_dir: Path | None = None) -> Path:
    """Resolve path against base_dir (or cwd) and expand user/symlinks."""
    path = path.expanduser()
    if not path.is_absolute():
        if base_dir is None:
            base_dir = Path.cwd()
        path = base_dir / path
    return path.resolve()


def parse_file_string(value: str, base_dir: Path | None = None) -> FileInput:
    """Parse a file input string into a FileInput."""
    if not value or not value.strip():
        raise ValueError("File path must be a non-empty string")
    return parse_file_path(Path(value.strip()), base_dir=base_dir)


def parse_file_path(path: Path, base_dir: Path | None = None) -> FileInput:
    """Parse a Path into a FileInput, detecting the format from its suffix."""
    normalized = _normalize_path(path, base_dir=base_dir)
    suffix = normalized.suffix.lower()
    if suffix not in SUPPORTED_FILE_EXTENSIONS:
        raise ValueError(f"Unsupported file extension: {suffix or '(none)'}")
    return FileInput(path=normalized, format=SUPPORTED_FILE_EXTENSIONS[suffix])


def _ensure_file_exists(path: Path) -> None:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")


def _write_table(
    conn: duckdb.DuckDBPyConnection, df: pl.DataFrame, table_name: str
) -> None:
    """Write a DataFrame to DuckDB with a leading _row_id INTEGER column.

    Uses DuckDB's native DataFrame scan for bulk ingestion.
    """
    table = quote_ident(table_name)
    conn.execute(f"DROP TABLE IF EXISTS {table}")
    conn.register("_df", df)
    try:
        conn.execute(
            f"CREATE TABLE {table} AS "
            'SELECT CAST(row_number() OVER () AS INTEGER) AS "_row_id", * '
            "FROM _df"
        )
    finally:
        conn.unregister("_df")


def ingest_table(
    conn: duckdb.DuckDBPyConnection, data: TableData, table_name: str
) -> None:
    """Ingest tabular data into the database as a named table.

    Accepts DataFrame, list[dict], or dict[str, list].
    Rows are numbered from 1 in input order in ``_row_id``.
    """
    df = coerce_to_dataframe(data)
    _write_table(conn, df, table_name)


def ingest_file(
    conn: duckdb.DuckDBPyConnection, file_input: FileInput, table_name: str
) -> None:
    """Ingest a file with the matching DuckDB reader function."""
    _ensure_file_exists(file_input.path)
    reader = DUCKDB_READERS.get(file_input.format)
    if reader is None:
        raise ValueError(f"Unsupported file format: {file_input.format}")
    table = quote_ident(table_name)
    conn.execute(f"DROP TABLE IF EXISTS {table}")
    conn.execute(
        f"CREATE TABLE {table} AS "
        'SELECT CAST(row_number() OVER () AS INTEGER) AS "_row_id", * '
        f"FROM {reader}(?)",
        [str(file_input.path)],
    )
    if file_input.format in INFERRED_FORMATS:
        _fix_inferred_types(conn, table_name)
    log.debug("Ingested %s into %s", file_input.path, table_name)


def _text_number_type(
    conn: duckdb.DuckDBPyConnection, table: str, column: str
) -> str:
    """BIGINT if every parseable value of a text column is an integer, else DOUBLE."""
    col = quote_ident(column)
    (fractional,) = conn.execute(
        f"SELECT COUNT(*) FROM {table} "
        f"WHERE TRY_CAST({col} AS DOUBLE) IS NOT NULL "
        f"AND NOT regexp_full_match(trim({col}), '{_INTEGER_TEXT}')"
    ).fetchone()
    return "BIGINT" if fractional == 0 else "DOUBLE"


def _fix_inferred_types(conn: duckdb.DuckDBPyConnection, table_name: str) -> None:
    """Undo type guesses that would reject well-formed sales rows.

    A category column of codes such as ``101`` is read as a number and is
    turned back into VARCHAR.  A price or quantity column read as VARCHAR
    (one bad cell is enough) is cast per value, so only the unparseable
    cells become NULL and invalid.
    """
    table = quote_ident(table_name)
    schema = dict(get_column_schema(conn, table_name))
    if schema.get("category", "VARCHAR") != "VARCHAR":
        conn.execute(f'ALTER TABLE {table} ALTER "category" SET DATA TYPE VARCHAR')
        log.debug("Read %s.category as VARCHAR", table_name)
    for name in ("price", "quantity"):
        if schema.get(name) != "VARCHAR":
            continue
        dtype = _text_number_type(conn, table, name)
        col = quote_ident(name)
        conn.execute(
            f"ALTER TABLE {table} ALTER {col} SET DATA TYPE {dtype} "
            f"USING TRY_CAST({col} AS {dtype})"
        )
        log.debug("Read %s.%s as %s", table_name, name, dtype)


def read_frame(file_input: FileInput) -> pl.DataFrame:
    """Read a file into a Polars DataFrame."""
    _ensure_file_exists(file_input.path)
    fmt = file_input.format
    if fmt == "csv":
        return pl.read_csv(file_input.path)
    if fmt == "parquet":
        return pl.read_parquet(file_input.path)
    if fmt == "json":
        return pl.read_json(file_input.path)
    if fmt == "ndjson":
        return pl.read_ndjson(file_input.path)
    raise ValueError(f"Unsupported file format: {fmt}")


def read_records(file_input: FileInput) -> list[dict[str, Any]]:
    """Read a file into row dicts for the in-memory aggregator."""
    return read_frame(file_input).to_dicts()


def iter_table_records(
    conn: duckdb.DuckDBPyConnection, table_name: str
) -> Iterator[dict[str, Any]]:
    """Yield the rows of a DuckDB table as dicts, in ``_row_id`` order if present."""
    cursor = conn.execute(f"SELECT * FROM {quote_ident(table_name)}")
    columns = [desc[0] for desc in cursor.description]
    rows = cursor.fetchall()
    if "_row_id" in columns:
        idx = columns.index("_row_id")
        rows.sort(key=lambda r: r[idx])
    for row in rows:
        yield dict(zip(columns, row))
