from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from salespipe.core.config import get_settings
from salespipe.pipeline.items import LineItemStore, license_store, product_store, rental_store
from salespipe.pipeline.schemas import CurrencyTotals, PipelineTotals


_QUANT = Decimal("0.000001")
_HUNDRED = Decimal("100")


def _q(value: Decimal) -> Decimal:
    return value.quantize(_QUANT)


def _dec(value: Any, default: str = "0") -> Decimal:
    if value is None:
        return Decimal(default)
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass(slots=True)
class LineBreakdown:
    currency: str
    line_total: Decimal
    discount_total: Decimal
    sub_total: Decimal
    tax_total: Decimal
    grand_total: Decimal


def line_total(item: Any, *, rental: bool = False) -> Decimal:
    """``qty × price``, times the rent period for rentals.

    A missing or zero quantity counts as one unit; a missing or zero rent
    period counts as the configured default (12).
    """
    total = (_dec(getattr(item, "qty", None)) or Decimal("1")) * _dec(getattr(item, "price", None))
    if rental:
        total *= Decimal(getattr(item, "rent_period", None) or get_settings().default_rent_period)
    return total


def breakdown(item: Any, *, rental: bool = False) -> LineBreakdown:
    total = line_total(item, rental=rental)
    discount_total = total * _dec(getattr(item, "discount_rate", None)) / _HUNDRED
    sub_total = total - discount_total
    tax_total = sub_total * _dec(getattr(item, "vat_rate", None)) / _HUNDRED
    return LineBreakdown(
        currency=getattr(item, "currency", None) or get_settings().default_currency,
        line_total=_q(total),
        discount_total=_q(discount_total),
        sub_total=_q(sub_total),
        tax_total=_q(tax_total),
        grand_total=_q(sub_total + tax_total),
    )


@dataclass(slots=True)
class _Bucket:
    sub_total: Decimal = field(default_factory=lambda: Decimal("0"))
    discount_total: Decimal = field(default_factory=lambda: Decimal("0"))
    tax_total: Decimal = field(default_factory=lambda: Decimal("0"))
    grand_total: Decimal = field(default_factory=lambda: Decimal("0"))

    def add(self, line: LineBreakdown) -> None:
        self.sub_total += line.sub_total
        self.discount_total += line.discount_total
        self.tax_total += line.tax_total
        self.grand_total += line.grand_total


def sum_across_currencies_unconverted(currencies: list[CurrencyTotals]) -> dict[str, Decimal]:
    """Add every currency bucket together without exchange rates.

    The result is only meaningful when a single currency dominates. Replace
    this helper when rates are applied.
    """
    return {
        "overall_sub_total": _q(sum((c.sub_total for c in currencies), Decimal("0"))),
        "overall_discount_total": _q(sum((c.discount_total for c in currencies), Decimal("0"))),
        "overall_tax_total": _q(sum((c.tax_total for c in currencies), Decimal("0"))),
        "overall_grand_total": _q(sum((c.grand_total for c in currencies), Decimal("0"))),
    }


def totals_from_lines(lines: list[LineBreakdown]) -> PipelineTotals:
    buckets: dict[str, _Bucket] = {}
    for line in lines:
        buckets.setdefault(line.currency, _Bucket()).add(line)

    currencies = [
        CurrencyTotals(
            currency=currency,
            sub_total=_q(bucket.sub_total),
            discount_total=_q(bucket.discount_total),
            tax_total=_q(bucket.tax_total),
            grand_total=_q(bucket.grand_total),
        )
        for currency, bucket in buckets.items()
    ]
    return PipelineTotals(currencies=currencies, **sum_across_currencies_unconverted(currencies))


@dataclass(slots=True)
class TotalsCalculator:
    products: LineItemStore = product_store
    licenses: LineItemStore = license_store
    rentals: LineItemStore = rental_store

    def calculate_totals(self, session: Session, parent_id: uuid.UUID, parent_type: str) -> PipelineTotals:
        # payments are excluded from totals
        lines = [breakdown(item) for item in self.products.find_by_parent(session, parent_id, parent_type)]
        lines += [breakdown(item) for item in self.licenses.find_by_parent(session, parent_id, parent_type)]
        lines += [
            breakdown(item, rental=True) for item in self.rentals.find_by_parent(session, parent_id, parent_type)
        ]
        return totals_from_lines(lines)


totals_calculator = TotalsCalculator()
