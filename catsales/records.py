"""Sale records and per-category totals.

Input rows arrive as loosely-typed mappings (documents from a collection,
rows from a CSV, dicts built by hand).  ``coerce_record`` is the boundary
where they become :class:`SaleRecord` values; anything out of contract
raises :class:`InvalidSaleRecord`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Union

Number = Union[int, float, Decimal]

REQUIRED_FIELDS = ("category", "price", "quantity")


class InvalidSaleRecord(ValueError):
    """Raised when a sale record is missing a field or has a bad value."""

    def __init__(
        self,
        reason: str,
        *,
        index: int | None = None,
        field: str | None = None,
    ) -> None:
        self.reason = reason
        self.index = index
        self.field = field
        where = f"record {index}" if index is not None else "record"
        super().__init__(f"Invalid sale {where}: {reason}")


@dataclass(frozen=True)
class SaleRecord:
    category: str
    price: Number
    quantity: Number

    def amount(self) -> Number:
        """Revenue of this record: ``price * quantity``.

        A Decimal operand promotes the other one, so Decimal and float values
        can be mixed.
        """
        if isinstance(self.price, Decimal) or isinstance(self.quantity, Decimal):
            return to_decimal(self.price) * to_decimal(self.quantity)
        return self.price * self.quantity


@dataclass(frozen=True)
class CategoryTotal:
    """One output row: a category and its summed revenue."""

    category: str
    total_sales: Number

    def to_dict(self) -> dict[str, Any]:
        return {"category": self.category, "totalSales": self.total_sales}


def to_decimal(value: Number) -> Decimal:
    """Convert a number to Decimal; floats go through ``str`` first."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def add_numbers(a: Number, b: Number) -> Number:
    """Return ``a + b``, promoting to Decimal when either side is one."""
    if isinstance(a, Decimal) != isinstance(b, Decimal):
        return to_decimal(a) + to_decimal(b)
    return a + b


def is_number(value: Any) -> bool:
    """Return True for finite int/float/Decimal values (bool excluded)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, Decimal):
        return value.is_finite()
    return False


def _check_number(value: Any, field: str, index: int | None) -> Number:
    if value is None:
        raise InvalidSaleRecord(f"'{field}' is null", index=index, field=field)
    if not is_number(value):
        raise InvalidSaleRecord(
            f"'{field}' must be a finite number, got {value!r}",
            index=index,
            field=field,
        )
    return value


def _check_category(value: Any, index: int | None) -> str:
    if value is None:
        raise InvalidSaleRecord("'category' is null", index=index, field="category")
    if not isinstance(value, str):
        raise InvalidSaleRecord(
            f"'category' must be a string, got {type(value).__name__}",
            index=index,
            field="category",
        )
    return value


def coerce_record(
    raw: SaleRecord | Mapping[str, Any], *, index: int | None = None
) -> SaleRecord:
    """Validate *raw* and return it as a :class:`SaleRecord`.

    Accepts a ``SaleRecord`` or any mapping with ``category``, ``price`` and
    ``quantity`` keys.  Extra keys are ignored.  Category strings are kept
    exactly as given ("Books" and "books" are different categories).
    """
    if isinstance(raw, SaleRecord):
        fields = {name: getattr(raw, name) for name in REQUIRED_FIELDS}
    elif isinstance(raw, Mapping):
        fields = raw
    else:
        raise InvalidSaleRecord(
            f"expected a mapping or SaleRecord, got {type(raw).__name__}",
            index=index,
        )

    for name in REQUIRED_FIELDS:
        if name not in fields:
            raise InvalidSaleRecord(f"missing '{name}'", index=index, field=name)

    category = _check_category(fields["category"], index)
    price = _check_number(fields["price"], "price", index)
    quantity = _check_number(fields["quantity"], "quantity", index)

    if isinstance(raw, SaleRecord):
        return raw
    return SaleRecord(category=category, price=price, quantity=quantity)
