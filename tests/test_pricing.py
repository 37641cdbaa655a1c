"""Price adjustment tests."""

from __future__ import annotations

from decimal import Decimal

import pytest

from contract_engine.models import AdjustmentKind, PriceAdjustment
from contract_engine.renewal.pricing import apply_adjustment


@pytest.mark.parametrize(
    "base,value,expected",
    [
        ("300", "5", "315.00"),
        ("1000", "-50", "500.00"),
        ("99.99", "3", "102.99"),  # 102.9897 rounds half up to cents
        ("10.05", "10", "11.06"),  # 11.055 rounds up
    ],
)
def test_percentage_adjustment(base, value, expected):
    proposed, applied = apply_adjustment(
        Decimal(base), PriceAdjustment(kind=AdjustmentKind.PERCENTAGE, value=Decimal(value))
    )
    assert proposed == Decimal(expected)
    assert applied.kind == AdjustmentKind.PERCENTAGE
    assert applied.reason == f"Automatic {value}% adjustment per renewal rule"


def test_fixed_amount_adjustment():
    proposed, applied = apply_adjustment(
        Decimal("300"), PriceAdjustment(kind=AdjustmentKind.FIXED_AMOUNT, value=Decimal("25.5"))
    )
    assert proposed == Decimal("325.50")
    assert applied.reason == "Fixed amount adjustment of 25.5 per renewal rule"


def test_negative_result_is_not_clamped():
    proposed, _ = apply_adjustment(
        Decimal("10"), PriceAdjustment(kind=AdjustmentKind.FIXED_AMOUNT, value=Decimal("-25"))
    )
    assert proposed == Decimal("-15.00")


def test_no_adjustment_returns_base():
    assert apply_adjustment(Decimal("300"), None) == (Decimal("300"), None)


def test_missing_base_value_passes_through():
    adjustment = PriceAdjustment(kind=AdjustmentKind.PERCENTAGE, value=Decimal("5"))
    assert apply_adjustment(None, adjustment) == (None, None)
