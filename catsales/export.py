"""Write category totals out: files (json, csv, parquet) or a DuckDB table."""

from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable

import duckdb
import polars as pl

from .catalog import quote_ident
from .records import CategoryTotal

EXPORT_FORMATS = {".json": "json", ".csv": "csv", ".parquet": "parquet"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        # Integral decimals print without an exponent or trailing zeros.
        if obj == obj.to_integral_value():
            return int(obj)
        return float(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def totals_to_frame(totals: Iterable[CategoryTotal]) -> pl.DataFrame:
    """Return totals as a DataFrame with ``category`` and ``totalSales`` columns."""
    rows = [t.to_dict() for t in totals]
    if not rows:
        return pl.DataFrame(
            schema={"category": pl.Utf8, "totalSales": pl.Float64}
        )
    return pl.DataFrame(rows)


def totals_to_json(totals: Iterable[CategoryTotal], *, indent: int | None = 2) -> str:
    return json.dumps(
        [t.to_dict() for t in totals], indent=indent, default=_json_default
    )


def write_totals(totals: Iterable[CategoryTotal], path: Path) -> None:
    """Write totals to *path*; the format comes from its suffix."""
    fmt = EXPORT_FORMATS.get(path.suffix.lower())
    if fmt is None:
        raise ValueError(
            f"Unsupported output extension: {path.suffix or '(none)'} "
            f"(expected one of {', '.join(sorted(EXPORT_FORMATS))})"
        )
    totals = list(totals)
    path.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "json":
        path.write_text(totals_to_json(totals) + "\n")
    elif fmt == "csv":
        totals_to_frame(totals).write_csv(path)
    else:
        totals_to_frame(totals).write_parquet(path)


def materialize_totals(
    conn: duckdb.DuckDBPyConnection,
    totals: Iterable[CategoryTotal],
    table_name: str = "category_totals",
) -> None:
    """Replace *table_name* with the given totals."""
    df = totals_to_frame(totals)
    table = quote_ident(table_name)
    conn.execute(f"DROP TABLE IF EXISTS {table}")
    conn.register("_totals_df", df)
    try:
        conn.execute(f"CREATE TABLE {table} AS SELECT * FROM _totals_df")
    finally:
        conn.unregister("_totals_df")
