"""Price adjustment applied to a contract value at renewal."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from contract_engine.models import AdjustmentKind, AppliedAdjustment, PriceAdjustment

_CENTS = Decimal("0.01")


def apply_adjustment(
    base_value: Decimal | None,
    adjustment: PriceAdjustment | None,
) -> tuple[Decimal | None, AppliedAdjustment | None]:
    """Compute the proposed renewal value.

    PERCENTAGE: ``base * (1 + value / 100)``. FIXED_AMOUNT: ``base + value``.
    Results are rounded to cents. With no adjustment or no base value the
    base is returned unchanged with no explanation. Negative results are
    not clamped.

    Returns:
        ``(proposed_value, explanation)``.
    """
    if adjustment is None or base_value is None:
        return base_value, None

    if adjustment.kind == AdjustmentKind.PERCENTAGE:
        proposed = base_value * (Decimal(1) + adjustment.value / Decimal(100))
        reason = f"Automatic {adjustment.value}% adjustment per renewal rule"
    else:
        proposed = base_value + adjustment.value
        reason = f"Fixed amount adjustment of {adjustment.value} per renewal rule"

    return (
        proposed.quantize(_CENTS, rounding=ROUND_HALF_UP),
        AppliedAdjustment(kind=adjustment.kind, value=adjustment.value, reason=reason),
    )
