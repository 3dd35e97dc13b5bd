"""Group sale records by category and sum ``price * quantity`` per group.

This is the in-memory form of::

    SELECT category, SUM(price * quantity) AS totalSales
    FROM sales
    GROUP BY category

implemented as a fold over a mapping keyed by category.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable, Mapping

from .records import (
    CategoryTotal,
    InvalidSaleRecord,
    Number,
    SaleRecord,
    add_numbers,
    coerce_record,
    to_decimal,
)

log = logging.getLogger(__name__)

ON_INVALID_CHOICES = ("fail", "skip")
NUMERIC_CHOICES = ("native", "decimal")
SORT_KEYS = ("category", "totalSales")


def check_on_invalid(on_invalid: str) -> str:
    if on_invalid not in ON_INVALID_CHOICES:
        raise ValueError(
            f"on_invalid must be one of {', '.join(ON_INVALID_CHOICES)}; "
            f"got {on_invalid!r}"
        )
    return on_invalid


def check_numeric(numeric: str) -> str:
    if numeric not in NUMERIC_CHOICES:
        raise ValueError(
            f"numeric must be one of {', '.join(NUMERIC_CHOICES)}; got {numeric!r}"
        )
    return numeric


class CategorySalesAggregator:
    """Running per-category revenue totals.

    Feed records with :meth:`add` or :meth:`extend`, then read
    :meth:`totals`.  Categories are reported in the order they were first
    seen.

    Attributes:
        on_invalid: ``"fail"`` raises on the first out-of-contract record;
            ``"skip"`` drops it and records it in :attr:`skipped`.
        numeric: ``"native"`` sums values as given; ``"decimal"`` converts
            price and quantity to :class:`~decimal.Decimal` first.
        record_count: Number of records folded into the totals.
        skipped: Records rejected under the ``"skip"`` policy.
    """

    def __init__(self, on_invalid: str = "fail", numeric: str = "native") -> None:
        self.on_invalid = check_on_invalid(on_invalid)
        self.numeric = check_numeric(numeric)
        self.record_count = 0
        self.skipped: list[InvalidSaleRecord] = []
        self._totals: dict[str, Number] = {}
        self._seen = 0

    def _amount(self, record: SaleRecord) -> Number:
        if self.numeric == "decimal":
            return to_decimal(record.price) * to_decimal(record.quantity)
        return record.amount()

    def add(
        self, raw: SaleRecord | Mapping[str, Any], index: int | None = None
    ) -> None:
        """Fold one record into the running totals."""
        if index is None:
            index = self._seen
        self._seen = index + 1
        try:
            record = coerce_record(raw, index=index)
        except InvalidSaleRecord as e:
            if self.on_invalid == "fail":
                raise
            log.debug("Skipping %s", e)
            self.skipped.append(e)
            return

        zero: Number = Decimal(0) if self.numeric == "decimal" else 0
        current = self._totals.get(record.category, zero)
        self._totals[record.category] = add_numbers(current, self._amount(record))
        self.record_count += 1

    def extend(self, records: Iterable[SaleRecord | Mapping[str, Any]]) -> None:
        for raw in records:
            self.add(raw)

    def totals(self) -> list[CategoryTotal]:
        return [
            CategoryTotal(category=category, total_sales=total)
            for category, total in self._totals.items()
        ]


def aggregate_sales(
    records: Iterable[SaleRecord | Mapping[str, Any]],
    *,
    on_invalid: str = "fail",
    numeric: str = "native",
) -> list[CategoryTotal]:
    """Return one :class:`CategoryTotal` per distinct category in *records*.

    Each total is the sum of ``price * quantity`` over the records sharing
    that category.  An empty input yields an empty list.

    Raises:
        InvalidSaleRecord: a record is out of contract and *on_invalid* is
            ``"fail"``.
    """
    aggregator = CategorySalesAggregator(on_invalid=on_invalid, numeric=numeric)
    aggregator.extend(records)
    if aggregator.skipped:
        log.warning(
            "Skipped %d invalid sale record(s) of %d",
            len(aggregator.skipped),
            aggregator.record_count + len(aggregator.skipped),
        )
    return aggregator.totals()


def sort_totals(
    totals: Iterable[CategoryTotal],
    *,
    by: str = "category",
    descending: bool = False,
) -> list[CategoryTotal]:
    """Order totals by category name or by ``totalSales``."""
    if by == "category":
        return sorted(totals, key=lambda t: t.category, reverse=descending)
    if by == "totalSales":
        # Ties broken by category so the order is deterministic.
        ordered = sorted(totals, key=lambda t: t.category)
        return sorted(ordered, key=lambda t: t.total_sales, reverse=descending)
    raise ValueError(f"Cannot sort by {by!r}; expected one of {', '.join(SORT_KEYS)}")
