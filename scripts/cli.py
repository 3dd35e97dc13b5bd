"""CLI entry point for catsales.

Usage:
    # Totals per category, printed as category<TAB>totalSales
    catsales run data/sales.csv

    # Same grouping executed by DuckDB, saved with trace + metadata
    catsales run data/sales.csv --engine duckdb --db runs/sales.db

    # Inspect a saved run
    catsales show runs/sales.db
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
import duckdb
from dotenv import find_dotenv, load_dotenv

# Load .env by walking upward from the CWD.
_dotenv_path = find_dotenv(usecwd=True)
if _dotenv_path:
    load_dotenv(_dotenv_path)

from catsales.aggregate import (
    NUMERIC_CHOICES,
    ON_INVALID_CHOICES,
    SORT_KEYS,
    CategorySalesAggregator,
    sort_totals,
)
from catsales.catalog import count_rows, list_tables, table_exists
from catsales.config import ENGINE_CHOICES, Settings, load_settings
from catsales.export import materialize_totals, write_totals
from catsales.infra import init_infra, persist_run_meta, read_run_meta
from catsales.ingest import (
    FileInput,
    ingest_file,
    iter_table_records,
    parse_file_string,
)
from catsales.query import aggregate_table, check_table
from catsales.records import CategoryTotal, InvalidSaleRecord

log = logging.getLogger(__name__)

TOTALS_TABLE = "category_totals"


def _meta_json(meta: dict[str, str], key: str) -> dict[str, Any]:
    """Parse a JSON blob from run meta."""
    raw = meta.get(key)
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {}


def _format_total(total: CategoryTotal) -> str:
    return f"{total.category}\t{total.total_sales}"


@click.group()
def main():
    """catsales: revenue per category from sale records."""


def _aggregate(
    conn: duckdb.DuckDBPyConnection, settings: Settings
) -> tuple[list[CategoryTotal], int, int]:
    """Run the configured engine. Returns ``(totals, records, skipped)``."""
    if settings.engine == "duckdb":
        totals = aggregate_table(
            conn,
            settings.table,
            on_invalid=settings.on_invalid,
            numeric=settings.numeric,
        )
        check = check_table(conn, settings.table)
        return totals, check.total - check.invalid, check.invalid

    aggregator = CategorySalesAggregator(
        on_invalid=settings.on_invalid, numeric=settings.numeric
    )
    aggregator.extend(iter_table_records(conn, settings.table))
    if aggregator.skipped:
        log.warning(
            "Skipped %d invalid sale record(s) of %d",
            len(aggregator.skipped),
            aggregator.record_count + len(aggregator.skipped),
        )
        for err in aggregator.skipped:
            log.info("  - %s", err)
    return aggregator.totals(), aggregator.record_count, len(aggregator.skipped)


def _staging_path(db: Path) -> Path:
    """Where a run is built before it replaces *db*."""
    return db.with_name(f".{db.name}.tmp")


def _remove_db(path: Path) -> None:
    path.unlink(missing_ok=True)
    path.with_name(path.name + ".wal").unlink(missing_ok=True)


def _run_pipeline(
    conn: duckdb.DuckDBPyConnection,
    file_input: FileInput,
    settings: Settings,
    *,
    sort_by: str | None,
    descending: bool,
    persist: bool,
) -> list[CategoryTotal]:
    """Ingest, aggregate and (when *persist*) save totals and run metadata."""
    init_infra(conn)
    try:
        ingest_file(conn, file_input, settings.table)
    except FileNotFoundError as e:
        raise click.ClickException(str(e))
    except duckdb.Error as e:
        raise click.ClickException(f"Failed to read {file_input.path}: {e}")

    try:
        totals, record_count, skipped_count = _aggregate(conn, settings)
    except InvalidSaleRecord as e:
        raise click.ClickException(
            f"{e} (use --on-invalid skip to exclude invalid records)"
        )
    except duckdb.Error as e:
        raise click.ClickException(f"Aggregation failed: {e}")

    if sort_by is not None:
        totals = sort_totals(totals, by=sort_by, descending=descending)

    if persist:
        materialize_totals(conn, totals, TOTALS_TABLE)
        persist_run_meta(
            conn,
            engine=settings.engine,
            on_invalid=settings.on_invalid,
            numeric=settings.numeric,
            input_path=str(file_input.path),
            table_name=settings.table,
            record_count=record_count,
            skipped_count=skipped_count,
            category_count=len(totals),
        )
    return totals


@main.command()
@click.argument("input_path", metavar="INPUT")
@click.option(
    "--engine",
    type=click.Choice(ENGINE_CHOICES),
    default=None,
    help="Aggregate in Python (fold) or in DuckDB (GROUP BY) (default: python)",
)
@click.option(
    "--on-invalid",
    type=click.Choice(ON_INVALID_CHOICES),
    default=None,
    help="Fail the run or skip records with missing/non-numeric fields (default: fail)",
)
@click.option(
    "--numeric",
    type=click.Choice(NUMERIC_CHOICES),
    default=None,
    help="Sum values as given or as exact decimals (default: native)",
)
@click.option(
    "--sort",
    "sort_by",
    type=click.Choice(SORT_KEYS),
    default=None,
    help="Sort output (default: order of first appearance)",
)
@click.option("--descending", is_flag=True, help="Reverse the --sort order")
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Also write totals to a .json, .csv or .parquet file",
)
@click.option(
    "--db",
    type=click.Path(path_type=Path),
    default=None,
    help="Persist sales, totals, trace and run metadata to a DuckDB file",
)
@click.option("--table", default=None, help="Name of the ingested sales table")
@click.option("--quiet", "-q", is_flag=True, help="Suppress verbose output")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite --db file without prompting",
)
def run(
    input_path: str,
    engine: str | None,
    on_invalid: str | None,
    numeric: str | None,
    sort_by: str | None,
    descending: bool,
    output: Path | None,
    db: Path | None,
    table: str | None,
    quiet: bool,
    force: bool,
):
    """Aggregate sale records in INPUT by category."""
    level = logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )

    try:
        settings = load_settings(
            engine=engine, on_invalid=on_invalid, numeric=numeric, table=table
        )
        file_input = parse_file_string(input_path)
    except ValueError as e:
        raise click.ClickException(str(e))

    if db is not None and db.exists():
        if not force:
            click.confirm(
                f"{db} already exists and will be overwritten. Continue?",
                abort=True,
            )

    log.info("Input: %s", file_input.path)
    log.info(
        "Engine: %s  on_invalid: %s  numeric: %s",
        settings.engine,
        settings.on_invalid,
        settings.numeric,
    )

    work_db = _staging_path(db) if db is not None else None
    if work_db is not None:
        _remove_db(work_db)
    try:
        conn = duckdb.connect(str(work_db) if work_db is not None else ":memory:")
        try:
            totals = _run_pipeline(
                conn,
                file_input,
                settings,
                sort_by=sort_by,
                descending=descending,
                persist=work_db is not None,
            )
        finally:
            conn.close()
    except Exception:
        if work_db is not None:
            _remove_db(work_db)
        raise
    if work_db is not None:
        work_db.replace(db)

    log.info("Categories: %d", len(totals))
    for total in totals:
        click.echo(_format_total(total))

    if output is not None:
        try:
            write_totals(totals, output)
        except ValueError as e:
            raise click.ClickException(str(e))
        log.info("Wrote: %s", output)
    if db is not None:
        log.info("Saved to: %s", db)
        log.info("Totals: SELECT * FROM %s", TOTALS_TABLE)
        log.info("SQL trace: SELECT * FROM _trace")


@main.command()
@click.argument("target", type=click.Path(path_type=Path))
def show(target: Path):
    """Show metadata and totals of a run saved with --db."""
    if not target.exists():
        raise click.ClickException(f"{target} does not exist.")

    try:
        conn = duckdb.connect(str(target), read_only=True)
    except duckdb.Error as e:
        raise click.ClickException(f"Cannot open {target}: {e}")

    try:
        meta = read_run_meta(conn)
        if not meta:
            raise click.ClickException(f"{target} has no catsales run metadata.")

        run_cfg = _meta_json(meta, "run")
        counts = _meta_json(meta, "counts")

        click.echo(f"Run: {target}\n")
        click.echo(f"Created: {meta.get('created_at_utc', '(unknown)')}")
        click.echo(f"Input: {meta.get('input_path', '(unknown)')}")
        click.echo(f"Engine: {run_cfg.get('engine', '(unknown)')}")
        click.echo(f"On invalid: {run_cfg.get('on_invalid', '(unknown)')}")
        click.echo(f"Numeric: {run_cfg.get('numeric', '(unknown)')}")

        if counts:
            click.echo("\nCounts:")
            for key in sorted(counts):
                click.echo(f"  {key}: {counts[key]}")

        tables = list_tables(conn)
        if tables:
            click.echo("\nTables:")
            for name in tables:
                click.echo(f"  {name}: {count_rows(conn, name)} rows")

        if table_exists(conn, TOTALS_TABLE):
            rows = conn.execute(
                f'SELECT category, "totalSales" FROM {TOTALS_TABLE}'
            ).fetchall()
            click.echo("\nTotals:")
            for category, total in rows:
                click.echo(f"  {category}\t{total}")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
