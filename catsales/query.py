"""Database-side category aggregation.

Runs the grouping as a single DuckDB query against a sales table, the way
the aggregation is expressed against a live collection.  Out-of-contract
rows are detected in SQL with the same rules as
:func:`catsales.records.coerce_record`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import duckdb

from .aggregate import check_numeric, check_on_invalid
from .catalog import get_column_names, get_column_schema, quote_ident, table_exists
from .infra import has_trace, log_trace
from .records import REQUIRED_FIELDS, CategoryTotal, InvalidSaleRecord

log = logging.getLogger(__name__)

# Products carry scale 20, leaving 18 integer digits before DuckDB
# raises an overflow error.
DECIMAL_TYPE = "DECIMAL(38, 10)"

NUMERIC_TYPES = {
    "TINYINT",
    "SMALLINT",
    "INTEGER",
    "BIGINT",
    "HUGEINT",
    "UTINYINT",
    "USMALLINT",
    "UINTEGER",
    "UBIGINT",
    "UHUGEINT",
    "FLOAT",
    "DOUBLE",
}
FLOAT_TYPES = {"FLOAT", "DOUBLE"}
TEXT_TYPES = {"VARCHAR"}


def _is_numeric_type(dtype: str) -> bool:
    return dtype in NUMERIC_TYPES or dtype.startswith("DECIMAL")


def invalid_row_predicate(schema: dict[str, str]) -> str:
    """SQL predicate that is true for rows that are out of contract.

    *schema* maps column name to DuckDB type and must contain every
    required field.
    """
    clauses = [f"{quote_ident(name)} IS NULL" for name in REQUIRED_FIELDS]
    if schema["category"] not in TEXT_TYPES:
        clauses.append("TRUE")
    for name in ("price", "quantity"):
        dtype = schema[name]
        if not _is_numeric_type(dtype):
            clauses.append("TRUE")
        elif dtype in FLOAT_TYPES:
            clauses.append(f"NOT isfinite({quote_ident(name)})")
    return " OR ".join(clauses)


def category_totals_sql(
    table: str,
    *,
    numeric: str = "native",
    where: str | None = None,
    order_by_first_row: bool = False,
) -> str:
    """Build the grouping query for *table*."""
    check_numeric(numeric)
    price, quantity = quote_ident("price"), quote_ident("quantity")
    if numeric == "decimal":
        price = f"CAST({price} AS {DECIMAL_TYPE})"
        quantity = f"CAST({quantity} AS {DECIMAL_TYPE})"
    sql = (
        f'SELECT "category", SUM({price} * {quantity}) AS "totalSales" '
        f"FROM {quote_ident(table)}"
    )
    if where:
        sql += f" WHERE {where}"
    sql += ' GROUP BY "category"'
    if order_by_first_row:
        sql += ' ORDER BY MIN("_row_id")'
    else:
        sql += ' ORDER BY "category"'
    return sql


def _execute(
    conn: duckdb.DuckDBPyConnection, query: str, source: str
) -> list[tuple[Any, ...]]:
    """Execute *query*, logging it to _trace when the table exists."""
    trace = has_trace(conn)
    start_time = time.perf_counter()
    try:
        rows = conn.execute(query).fetchall()
    except duckdb.Error as e:
        if trace:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            log_trace(
                conn, query, False, error=str(e), elapsed_ms=elapsed_ms, source=source
            )
        raise
    if trace:
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        log_trace(
            conn,
            query,
            True,
            row_count=len(rows),
            elapsed_ms=elapsed_ms,
            source=source,
        )
    return rows


@dataclass(frozen=True)
class TableCheck:
    """Validation summary for a sales table."""

    total: int
    invalid: int
    first_invalid_row_id: int | None
    missing: tuple[str, ...] = ()
    predicate: str | None = None


def check_table(conn: duckdb.DuckDBPyConnection, table: str) -> TableCheck:
    """Count the out-of-contract rows in *table*.

    When a required column is absent every row counts as invalid.

    Raises:
        ValueError: *table* does not exist.
    """
    if not table_exists(conn, table):
        raise ValueError(f"Table not found: {table}")

    schema = dict(get_column_schema(conn, table))
    missing = tuple(name for name in REQUIRED_FIELDS if name not in schema)
    if missing:
        count_sql = f"SELECT COUNT(*) FROM {quote_ident(table)}"
        (total,) = _execute(conn, count_sql, "validate")[0]
        return TableCheck(
            total=total,
            invalid=total,
            first_invalid_row_id=1 if total and "_row_id" in schema else None,
            missing=missing,
        )

    predicate = invalid_row_predicate(schema)
    position = '"_row_id"' if "_row_id" in schema else "NULL"
    invalid, first_row_id, total = _execute(
        conn,
        f"SELECT COUNT(*) FILTER (WHERE {predicate}), "
        f"MIN({position}) FILTER (WHERE {predicate}), COUNT(*) "
        f"FROM {quote_ident(table)}",
        "validate",
    )[0]
    return TableCheck(
        total=total,
        invalid=invalid,
        first_invalid_row_id=first_row_id,
        predicate=predicate,
    )


def aggregate_table(
    conn: duckdb.DuckDBPyConnection,
    table: str = "sales",
    *,
    on_invalid: str = "fail",
    numeric: str = "native",
) -> list[CategoryTotal]:
    """Aggregate a DuckDB table into per-category totals.

    Categories come back in order of their first row (by ``_row_id``) when
    the table has one, else sorted by name.

    Raises:
        ValueError: *table* does not exist.
        InvalidSaleRecord: a row is out of contract and *on_invalid* is
            ``"fail"``.
    """
    check_on_invalid(on_invalid)
    check_numeric(numeric)
    check = check_table(conn, table)

    if check.invalid:
        index = (
            check.first_invalid_row_id - 1
            if check.first_invalid_row_id is not None
            else None
        )
        if check.missing:
            reason = f"table '{table}' has no column(s) {', '.join(check.missing)}"
            field = check.missing[0]
        else:
            reason = (
                f"{check.invalid} row(s) in '{table}' have a missing or "
                "non-numeric category/price/quantity"
            )
            field = None
        if on_invalid == "fail":
            raise InvalidSaleRecord(reason, index=index, field=field)
        log.warning(
            "Skipped %d invalid sale record(s) of %d", check.invalid, check.total
        )

    if check.missing or check.invalid == check.total:
        return []

    where = f"NOT ({check.predicate})" if check.invalid else None
    has_row_id = "_row_id" in get_column_names(conn, table)
    query = category_totals_sql(
        table, numeric=numeric, where=where, order_by_first_row=has_row_id
    )
    rows = _execute(conn, query, "aggregate")
    return [
        CategoryTotal(category=category, total_sales=total) for category, total in rows
    ]
