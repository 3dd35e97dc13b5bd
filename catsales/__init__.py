"""catsales: revenue per category from sale records."""

from .aggregate import CategorySalesAggregator, aggregate_sales, sort_totals
from .config import Settings, load_settings
from .export import totals_to_frame, write_totals
from .ingest import coerce_to_dataframe, ingest_file, ingest_table, read_records
from .query import aggregate_table, category_totals_sql
from .records import CategoryTotal, InvalidSaleRecord, SaleRecord, coerce_record

__all__ = [
    # Records
    "SaleRecord",
    "CategoryTotal",
    "InvalidSaleRecord",
    "coerce_record",
    # In-memory aggregation
    "CategorySalesAggregator",
    "aggregate_sales",
    "sort_totals",
    # Database aggregation
    "aggregate_table",
    "category_totals_sql",
    # Ingestion
    "coerce_to_dataframe",
    "ingest_table",
    "ingest_file",
    "read_records",
    # Export
    "totals_to_frame",
    "write_totals",
    # Settings
    "Settings",
    "load_settings",
]
