"""Stock renewal rules installed by ``RenewalRuleService.seed_default_rules``."""

from __future__ import annotations

from decimal import Decimal

from contract_engine.models import (
    AdjustmentKind,
    ContractType,
    EligibilityConditions,
    NotificationChannel,
    NotificationSettings,
    PriceAdjustment,
    RenewalTrigger,
    RenewalType,
    RuleCreate,
)

STANDARD_MEMBERSHIP = RuleCreate(
    name="Standard Membership Auto-Renewal",
    description="Automatically renew membership contracts 30 days before expiry",
    contract_types=[ContractType.MEMBERSHIP],
    trigger=RenewalTrigger.DAYS_BEFORE_EXPIRY,
    trigger_days=30,
    renewal_type=RenewalType.EXTEND_CURRENT,
    auto_approve=True,
    renewal_period=12,
    price_adjustment=PriceAdjustment(kind=AdjustmentKind.PERCENTAGE, value=Decimal("5")),
    conditions=EligibilityConditions(min_contract_value=Decimal("100")),
    notification_settings=NotificationSettings(
        enabled=True,
        channels=[NotificationChannel.EMAIL, NotificationChannel.IN_APP],
        recipients=["admin@company.com"],
        template="renewal-notification",
    ),
)

PREMIUM_MANUAL_REVIEW = RuleCreate(
    name="Premium Contract Manual Review",
    description="High-value contracts require manual approval for renewal",
    contract_types=[ContractType.MEMBERSHIP, ContractType.SERVICE],
    trigger=RenewalTrigger.DAYS_BEFORE_EXPIRY,
    trigger_days=60,
    renewal_type=RenewalType.RENEGOTIATE,
    auto_approve=False,
    renewal_period=12,
    conditions=EligibilityConditions(min_contract_value=Decimal("1000")),
    notification_settings=NotificationSettings(
        enabled=True,
        channels=[NotificationChannel.EMAIL],
        recipients=["manager@company.com", "admin@company.com"],
    ),
)

DEFAULT_RULES: list[RuleCreate] = [STANDARD_MEMBERSHIP, PREMIUM_MANUAL_REVIEW]
