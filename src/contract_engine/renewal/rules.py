"""Renewal rule management: validated CRUD, rule lookup and stock rules."""

from __future__ import annotations

from typing import Any

import structlog

from contract_engine.clock import Clock
from contract_engine.errors import NotFoundError, ValidationError
from contract_engine.models import (
    AdjustmentKind,
    Contract,
    RenewalRule,
    RenewalTrigger,
    RuleCreate,
    RuleUpdate,
)
from contract_engine.renewal.defaults import DEFAULT_RULES
from contract_engine.renewal.eligibility import first_eligible_rule
from contract_engine.store.proposals import ProposalRepository
from contract_engine.store.rules import RenewalRuleStore

logger = structlog.get_logger(__name__)

# RuleUpdate fields that may not be explicitly cleared.
_REQUIRED_FIELDS = frozenset(
    {
        "name",
        "is_active",
        "contract_types",
        "trigger",
        "renewal_type",
        "auto_approve",
        "renewal_period",
        "notification_settings",
        "metadata",
    }
)


def validate_rule(rule: RenewalRule) -> None:
    """Range and consistency checks shared by create and update."""
    if not rule.name.strip():
        raise ValidationError("Rule name is required")
    if not rule.contract_types:
        raise ValidationError("Rule must apply to at least one contract type")

    if rule.trigger == RenewalTrigger.DAYS_BEFORE_EXPIRY and rule.trigger_days is None:
        raise ValidationError("Trigger days must be specified for DAYS_BEFORE_EXPIRY trigger")
    if rule.trigger_days is not None and not 1 <= rule.trigger_days <= 365:
        raise ValidationError("Trigger days must be between 1 and 365")

    if not 1 <= rule.renewal_period <= 120:
        raise ValidationError("Renewal period must be between 1 and 120 months")

    adjustment = rule.price_adjustment
    if adjustment is not None and adjustment.kind == AdjustmentKind.PERCENTAGE:
        if not -50 <= adjustment.value <= 100:
            raise ValidationError("Percentage adjustment must be between -50% and 100%")


class RenewalRuleService:
    def __init__(
        self,
        rules: RenewalRuleStore,
        proposals: ProposalRepository,
        clock: Clock,
    ) -> None:
        self._rules = rules
        self._proposals = proposals
        self._clock = clock

    def create_rule(self, tenant_id: str, actor: str, data: RuleCreate) -> RenewalRule:
        now = self._clock.now()
        rule = RenewalRule(
            tenant_id=tenant_id,
            created_by=actor,
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        validate_rule(rule)
        rule = self._rules.add(rule)
        logger.info(
            "renewal_rule_created",
            tenant_id=tenant_id,
            rule_id=rule.id,
            name=rule.name,
            auto_approve=rule.auto_approve,
        )
        return rule

    def get_rule(self, tenant_id: str, rule_id: str) -> RenewalRule:
        rule = self._rules.get(tenant_id, rule_id)
        if rule is None:
            raise NotFoundError("Renewal rule", rule_id)
        return rule

    def list_rules(self, tenant_id: str, active_only: bool = False) -> list[RenewalRule]:
        return self._rules.list(tenant_id, active_only=active_only)

    def update_rule(
        self, tenant_id: str, rule_id: str, patch: RuleUpdate
    ) -> RenewalRule:
        """Apply the explicitly set fields of *patch*, re-validating the merged rule."""
        current = self.get_rule(tenant_id, rule_id)

        changes: dict[str, Any] = {
            name: getattr(patch, name) for name in sorted(patch.model_fields_set)
        }
        cleared = sorted(k for k, v in changes.items() if v is None and k in _REQUIRED_FIELDS)
        if cleared:
            raise ValidationError(f"Fields cannot be cleared: {', '.join(cleared)}")
        if not changes:
            return current

        validate_rule(current.model_copy(update=changes))
        updated = self._rules.update(
            tenant_id, rule_id, {**changes, "updated_at": self._clock.now()}
        )
        logger.info(
            "renewal_rule_updated",
            tenant_id=tenant_id,
            rule_id=rule_id,
            fields=list(changes),
        )
        return updated

    def delete_rule(self, tenant_id: str, rule_id: str) -> None:
        self.get_rule(tenant_id, rule_id)
        if self._proposals.has_pending_for_rule(tenant_id, rule_id):
            raise ValidationError("Cannot delete rule with pending renewal proposals")
        self._rules.delete(tenant_id, rule_id)
        logger.info("renewal_rule_deleted", tenant_id=tenant_id, rule_id=rule_id)

    def find_applicable_rule(self, tenant_id: str, contract: Contract) -> RenewalRule | None:
        """First active rule, in creation order, for which *contract* is eligible."""
        return first_eligible_rule(self._rules.list(tenant_id, active_only=True), contract)

    def seed_default_rules(self, tenant_id: str, actor: str) -> list[RenewalRule]:
        """Install the stock rules that the tenant does not have yet (matched by name)."""
        existing = {rule.name for rule in self._rules.list(tenant_id)}
        created = [
            self.create_rule(tenant_id, actor, data)
            for data in DEFAULT_RULES
            if data.name not in existing
        ]
        logger.info("default_rules_seeded", tenant_id=tenant_id, created=len(created))
        return created
