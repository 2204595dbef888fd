"""
Tax amount stamping.

Every generated record carries its own copy of the template's amounts:

    vat_amount         = round2(base * vat_rate / 100)
    withholding_amount = round2(base * withholding_rate / 100)
    total              = round2(base + vat_amount - withholding_amount)

Rounding is half-up to cents on the decimal value, so 0.125 becomes 0.13
rather than the binary-float 0.12.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .models import GeneratedRecord, RecordDraft, RecordKind, RecordTemplate

__all__ = [
    "round_to_cents",
    "StampedAmounts",
    "stamp_amounts",
    "draft_from_template",
    "restamp_record",
]

_CENT = Decimal("0.01")


def round_to_cents(value: float) -> float:
    """Round half-up to two decimals."""
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class StampedAmounts:
    base_amount: float
    vat_rate: float
    vat_amount: float
    withholding_rate: float
    withholding_amount: float
    total: float


def stamp_amounts(base_amount: float, vat_rate: float, withholding_rate: float) -> StampedAmounts:
    """Compute the derived amounts for a taxable base."""
    vat = round_to_cents(base_amount * vat_rate / 100.0)
    withholding = round_to_cents(base_amount * withholding_rate / 100.0)
    return StampedAmounts(
        base_amount=round_to_cents(base_amount),
        vat_rate=float(vat_rate),
        vat_amount=vat,
        withholding_rate=float(withholding_rate),
        withholding_amount=withholding,
        total=round_to_cents(base_amount + vat - withholding),
    )


def draft_from_template(
    kind: RecordKind,
    template: RecordTemplate,
    on: date,
    series_id: Optional[str] = None,
) -> RecordDraft:
    """
    Stamp ``template`` into a record draft dated ``on``.

    A template without a withholding rate gets the default of ``kind``.
    """
    template = template.for_kind(kind)
    amounts = stamp_amounts(template.base_amount, template.vat_rate, template.withholding_rate)
    return RecordDraft(
        kind=kind,
        date=on,
        concept=template.concept,
        base_amount=amounts.base_amount,
        vat_rate=amounts.vat_rate,
        vat_amount=amounts.vat_amount,
        withholding_rate=amounts.withholding_rate,
        withholding_amount=amounts.withholding_amount,
        total=amounts.total,
        counterparty_name=template.counterparty_name,
        counterparty_tax_id=template.counterparty_tax_id,
        category=template.category,
        description=template.description,
        status=template.status,
        series_id=series_id,
        extra=dict(template.extra),
    )


def restamp_record(record: GeneratedRecord) -> GeneratedRecord:
    """Recompute derived amounts from the record's base and rates."""
    amounts = stamp_amounts(record.base_amount, record.vat_rate, record.withholding_rate)
    return replace(
        record,
        base_amount=amounts.base_amount,
        vat_amount=amounts.vat_amount,
        withholding_amount=amounts.withholding_amount,
        total=amounts.total,
    )
