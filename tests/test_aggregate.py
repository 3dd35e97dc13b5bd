"""Tests for catsales/aggregate.py - the in-memory category fold."""

import itertools
import logging
import random
from decimal import Decimal

import pytest

from tests.conftest import SEED_RECORDS, _as_pairs
from catsales.aggregate import (
    CategorySalesAggregator,
    aggregate_sales,
    check_numeric,
    check_on_invalid,
    sort_totals,
    to_decimal,
)
from catsales.records import CategoryTotal, InvalidSaleRecord, SaleRecord


class TestAggregateSales:
    def test_seed_scenario(self):
        totals = aggregate_sales(SEED_RECORDS)
        assert _as_pairs(totals) == {("A", 27), ("B", 15)}

    def test_first_seen_order(self):
        totals = aggregate_sales(SEED_RECORDS)
        assert [t.category for t in totals] == ["A", "B"]

    def test_empty_input(self):
        assert aggregate_sales([]) == []

    def test_single_category(self):
        records = [
            {"category": "X", "price": 2, "quantity": 3},
            {"category": "X", "price": 4, "quantity": 5},
            {"category": "X", "price": 1, "quantity": 1},
        ]
        assert aggregate_sales(records) == [CategoryTotal("X", 27)]

    def test_zero_quantity_category_still_reported(self):
        totals = aggregate_sales([{"category": "C", "price": 100, "quantity": 0}])
        assert totals == [CategoryTotal("C", 0)]

    def test_categories_are_case_sensitive(self):
        records = [
            {"category": "Books", "price": 1, "quantity": 1},
            {"category": "books", "price": 2, "quantity": 1},
        ]
        assert _as_pairs(aggregate_sales(records)) == {("Books", 1), ("books", 2)}

    def test_accepts_sale_records_and_generators(self):
        records = (SaleRecord(c, p, q) for c, p, q in [("A", 1, 2), ("A", 3, 4)])
        assert aggregate_sales(records) == [CategoryTotal("A", 14)]

    def test_fractional_quantities(self):
        totals = aggregate_sales([{"category": "F", "price": 4, "quantity": 0.5}])
        assert totals[0].total_sales == pytest.approx(2.0)

    def test_order_independence(self):
        for perm in itertools.permutations(SEED_RECORDS):
            assert _as_pairs(aggregate_sales(perm)) == {("A", 27), ("B", 15)}

    def test_completeness_and_sums_on_random_input(self):
        rng = random.Random(7)
        records = [
            {
                "category": rng.choice("ABCDE"),
                "price": rng.randint(0, 50),
                "quantity": rng.randint(0, 9),
            }
            for _ in range(300)
        ]
        expected: dict[str, int] = {}
        for r in records:
            expected[r["category"]] = (
                expected.get(r["category"], 0) + r["price"] * r["quantity"]
            )

        totals = aggregate_sales(records)
        assert {t.category for t in totals} == {r["category"] for r in records}
        assert len(totals) == len(expected)
        assert {t.category: t.total_sales for t in totals} == expected

        shuffled = records[:]
        rng.shuffle(shuffled)
        assert _as_pairs(aggregate_sales(shuffled)) == _as_pairs(totals)

    def test_fresh_result_per_call(self):
        aggregate_sales(SEED_RECORDS)
        assert _as_pairs(aggregate_sales(SEED_RECORDS[:1])) == {("A", 20)}


class TestInvalidPolicy:
    RECORDS = [
        {"category": "A", "price": 10, "quantity": 2},
        {"category": "A", "price": None, "quantity": 2},
        {"price": 1, "quantity": 1},
        {"category": "B", "price": 5, "quantity": 3},
    ]

    def test_fail_is_default(self):
        with pytest.raises(InvalidSaleRecord) as exc:
            aggregate_sales(self.RECORDS)
        assert exc.value.index == 1
        assert exc.value.field == "price"

    def test_skip_excludes_and_continues(self, caplog):
        with caplog.at_level(logging.WARNING, logger="catsales.aggregate"):
            totals = aggregate_sales(self.RECORDS, on_invalid="skip")
        assert _as_pairs(totals) == {("A", 20), ("B", 15)}
        assert "Skipped 2 invalid sale record(s) of 4" in caplog.text

    def test_aggregator_tracks_skipped(self):
        agg = CategorySalesAggregator(on_invalid="skip")
        agg.extend(self.RECORDS)
        assert agg.record_count == 2
        assert [e.index for e in agg.skipped] == [1, 2]
        assert agg.skipped[1].field == "category"

    def test_skip_all_invalid_yields_empty(self):
        assert aggregate_sales([{"category": "A"}], on_invalid="skip") == []

    def test_unknown_policy(self):
        with pytest.raises(ValueError, match="on_invalid"):
            aggregate_sales([], on_invalid="ignore")


class TestDecimalMode:
    def test_float_drift_without_decimal(self):
        records = [{"category": "A", "price": 0.1, "quantity": 1}] * 10
        native = aggregate_sales(records)[0].total_sales
        assert native != 1.0

    def test_decimal_is_exact(self):
        records = [{"category": "A", "price": 0.1, "quantity": 1}] * 10
        totals = aggregate_sales(records, numeric="decimal")
        assert totals == [CategoryTotal("A", Decimal("1.0"))]
        assert isinstance(totals[0].total_sales, Decimal)

    def test_decimal_empty_category_total_is_decimal_zero(self):
        totals = aggregate_sales(
            [{"category": "C", "price": 100, "quantity": 0}], numeric="decimal"
        )
        assert totals[0].total_sales == Decimal(0)

    def test_to_decimal(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal(3) == Decimal(3)
        assert to_decimal(Decimal("1.25")) == Decimal("1.25")

    def test_decimal_and_float_in_one_record(self):
        totals = aggregate_sales(
            [{"category": "A", "price": Decimal("1.5"), "quantity": 2.0}]
        )
        assert totals == [CategoryTotal("A", Decimal("3.0"))]

    def test_decimal_and_float_across_records(self):
        records = [
            {"category": "A", "price": Decimal("1.5"), "quantity": 2},
            {"category": "A", "price": 1.5, "quantity": 2},
            {"category": "A", "price": 0.25, "quantity": 4},
        ]
        (total,) = [t.total_sales for t in aggregate_sales(records)]
        assert isinstance(total, Decimal)
        assert total == Decimal("7")

    def test_unknown_numeric_mode(self):
        with pytest.raises(ValueError, match="numeric"):
            CategorySalesAggregator(numeric="float128")


class TestChecks:
    def test_check_on_invalid(self):
        assert check_on_invalid("skip") == "skip"

    def test_check_numeric(self):
        assert check_numeric("decimal") == "decimal"


class TestSortTotals:
    TOTALS = [CategoryTotal("b", 5), CategoryTotal("a", 5), CategoryTotal("c", 9)]

    def test_by_category(self):
        assert [t.category for t in sort_totals(self.TOTALS)] == ["a", "b", "c"]

    def test_by_total_descending_ties_by_category(self):
        ordered = sort_totals(self.TOTALS, by="totalSales", descending=True)
        assert [t.category for t in ordered] == ["c", "a", "b"]

    def test_by_total_ascending(self):
        ordered = sort_totals(self.TOTALS, by="totalSales")
        assert [t.category for t in ordered] == ["a", "b", "c"]

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Cannot sort"):
            sort_totals(self.TOTALS, by="price")
