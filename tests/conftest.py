"""Shared fixtures and helpers for the catsales test suite."""

from pathlib import Path

import duckdb
import pytest

from catsales.infra import init_infra

SEED_RECORDS = [
    {"category": "A", "price": 10, "quantity": 2},
    {"category": "B", "price": 5, "quantity": 3},
    {"category": "A", "price": 7, "quantity": 1},
]


@pytest.fixture
def conn():
    """In-memory DuckDB connection for each test."""
    c = duckdb.connect(":memory:")
    init_infra(c)
    yield c
    c.close()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep CATSALES_* settings from the developer's shell out of tests."""
    for name in ("ENGINE", "ON_INVALID", "NUMERIC", "TABLE"):
        monkeypatch.delenv(f"CATSALES_{name}", raising=False)


def _as_pairs(totals) -> set[tuple[str, object]]:
    """Return totals as an order-independent set of (category, total) pairs."""
    return {(t.category, t.total_sales) for t in totals}


def _write_csv(path: Path, text: str) -> Path:
    path.write_text(text)
    return path


def _tables(conn: duckdb.DuckDBPyConnection) -> set[str]:
    """Return the set of user-defined table names."""
    rows = conn.execute(
        "SELECT table_name FROM duckdb_tables() WHERE internal = false"
    ).fetchall()
    return {r[0] for r in rows}
