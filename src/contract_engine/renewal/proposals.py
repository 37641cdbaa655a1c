"""Renewal proposal workflow.

A proposal is created for an ACTIVE contract with an end date, either by a
person or by the sweep. If the matched rule auto-approves, the proposal is
born AUTO_RENEWED and executed on the spot; otherwise it waits in PENDING
for :meth:`RenewalProposalService.process_renewal_proposal`.

Creation and execution run inside one savepoint so a failed execution
leaves no half-renewed contract behind. Notifications go out only after
the savepoint is released and never fail the operation.
"""

from __future__ import annotations

from typing import Any

import structlog
from dateutil.relativedelta import relativedelta

from contract_engine.clock import Clock
from contract_engine.collaborators import Notifier
from contract_engine.errors import NotFoundError, ValidationError
from contract_engine.lifecycle import ContractLifecycleService
from contract_engine.lifecycle.validation import validate_dates
from contract_engine.models import (
    ActivityType,
    ContractStatus,
    Page,
    ProposalAction,
    ProposalDecision,
    ProposalFilter,
    RenewalProposal,
    RenewalRule,
    RenewalStatus,
    RenewalType,
)
from contract_engine.renewal.executor import RenewalExecutor
from contract_engine.renewal.pricing import apply_adjustment
from contract_engine.renewal.rules import RenewalRuleService
from contract_engine.store.base import UnitOfWork
from contract_engine.store.proposals import ProposalRepository

logger = structlog.get_logger(__name__)

PROPOSAL_CREATED = "PROPOSAL_CREATED"
PROPOSAL_APPROVED = "PROPOSAL_APPROVED"
PROPOSAL_DECLINED = "PROPOSAL_DECLINED"

_DEFAULT_TEMPLATE = "renewal-notification"


class RenewalProposalService:
    def __init__(
        self,
        proposals: ProposalRepository,
        lifecycle: ContractLifecycleService,
        rules: RenewalRuleService,
        executor: RenewalExecutor,
        notifier: Notifier,
        uow: UnitOfWork,
        clock: Clock,
        *,
        default_renewal_period: int = 12,
        system_actor: str = "system",
    ) -> None:
        self._proposals = proposals
        self._lifecycle = lifecycle
        self._rules = rules
        self._executor = executor
        self._notifier = notifier
        self._uow = uow
        self._clock = clock
        self._default_period = default_renewal_period
        self._system_actor = system_actor

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_renewal_proposal(
        self,
        tenant_id: str,
        contract_id: str,
        actor: str,
        rule_id: str | None = None,
        *,
        sweep_key: str | None = None,
    ) -> RenewalProposal:
        """Create a proposal for *contract_id*, executing it when the rule auto-approves.

        Args:
            rule_id: Rule to apply; when omitted the first applicable active
                rule is used, or none at all (EXTEND_CURRENT with the default
                period).
            sweep_key: Idempotency key set by the sweep; a second proposal
                with the same key is rejected by the store.

        Raises:
            NotFoundError: unknown contract or rule.
            ValidationError: the contract has no end date, is not ACTIVE, or
                already has a PENDING proposal.
            ConflictError: a concurrent request created the proposal first.
        """
        contract = self._lifecycle.get_contract(tenant_id, contract_id)
        if contract.end_date is None:
            raise ValidationError("Contract must have an end date to create renewal proposal")
        if contract.status != ContractStatus.ACTIVE:
            raise ValidationError("Only active contracts can be renewed")
        if self._proposals.has_pending(tenant_id, contract_id):
            raise ValidationError("Contract already has a pending renewal proposal")

        if rule_id is not None:
            rule: RenewalRule | None = self._rules.get_rule(tenant_id, rule_id)
        else:
            rule = self._rules.find_applicable_rule(tenant_id, contract)

        period = rule.renewal_period if rule else self._default_period
        start = contract.end_date
        proposed_value, adjustment = apply_adjustment(
            contract.value, rule.price_adjustment if rule else None
        )
        auto = rule is not None and rule.auto_approve

        now = self._clock.now()
        proposal = RenewalProposal(
            tenant_id=tenant_id,
            contract_id=contract_id,
            rule_id=rule.id if rule else None,
            current_contract_end_date=contract.end_date,
            proposed_start_date=start,
            proposed_end_date=start + relativedelta(months=period),
            renewal_period=period,
            current_value=contract.value,
            proposed_value=proposed_value,
            price_adjustment=adjustment,
            status=RenewalStatus.AUTO_RENEWED if auto else RenewalStatus.PENDING,
            renewal_type=rule.renewal_type if rule else RenewalType.EXTEND_CURRENT,
            approved_by=self._system_actor if auto else None,
            approved_at=now if auto else None,
            processed_at=now if auto else None,
            metadata={
                "rule_applied": rule.name if rule else None,
                "auto_generated": sweep_key is not None,
            },
            created_by=actor,
            created_at=now,
            updated_at=now,
        )

        with self._uow.savepoint():
            proposal = self._proposals.create(proposal, sweep_key=sweep_key)
            contract = self._lifecycle.mark_renewal_status(
                tenant_id, contract_id, proposal.status
            )
            if auto:
                self._lifecycle.record_activity(
                    contract,
                    ActivityType.RENEWAL_AUTO_APPROVED,
                    f"Renewal automatically approved until {proposal.proposed_end_date.isoformat()}",
                    self._system_actor,
                    {"proposal_id": proposal.id, "rule_id": proposal.rule_id},
                )
                proposal = self._executor.execute(tenant_id, proposal, self._system_actor)
            else:
                self._lifecycle.record_activity(
                    contract,
                    ActivityType.RENEWAL_PROPOSED,
                    f"Renewal proposed until {proposal.proposed_end_date.isoformat()}",
                    actor,
                    {"proposal_id": proposal.id, "rule_id": proposal.rule_id},
                )

        logger.info(
            "renewal_proposal_created",
            tenant_id=tenant_id,
            proposal_id=proposal.id,
            contract_id=contract_id,
            rule_id=proposal.rule_id,
            status=proposal.status.value,
        )
        self._notify(rule, proposal, PROPOSAL_CREATED)
        return proposal

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_proposal(self, tenant_id: str, proposal_id: str) -> RenewalProposal:
        proposal = self._proposals.get(tenant_id, proposal_id)
        if proposal is None:
            raise NotFoundError("Renewal proposal", proposal_id)
        return proposal

    def list_proposals(
        self, tenant_id: str, query: ProposalFilter | None = None
    ) -> Page[RenewalProposal]:
        return self._proposals.list(tenant_id, query or ProposalFilter())

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def process_renewal_proposal(
        self,
        tenant_id: str,
        proposal_id: str,
        actor: str,
        decision: ProposalDecision,
    ) -> RenewalProposal:
        proposal = self.get_proposal(tenant_id, proposal_id)
        if proposal.status != RenewalStatus.PENDING:
            raise ValidationError("Only pending proposals can be processed")

        if decision.action == ProposalAction.APPROVE:
            updated = self._approve(proposal, actor, decision)
            event = PROPOSAL_APPROVED
        else:
            updated = self._decline(proposal, actor, decision)
            event = PROPOSAL_DECLINED

        logger.info(
            "renewal_proposal_processed",
            tenant_id=tenant_id,
            proposal_id=proposal_id,
            contract_id=proposal.contract_id,
            action=decision.action.value,
            actor=actor,
        )
        rule = self._rules_or_none(tenant_id, proposal.rule_id)
        self._notify(rule, updated, event)
        return updated

    def _approve(
        self, proposal: RenewalProposal, actor: str, decision: ProposalDecision
    ) -> RenewalProposal:
        now = self._clock.now()
        changes: dict[str, Any] = {
            "status": RenewalStatus.APPROVED,
            "approved_by": actor,
            "approved_at": now,
            "processed_at": now,
            "updated_at": now,
        }
        if decision.notes is not None:
            changes["notes"] = decision.notes
        if decision.modify_terms:
            if decision.new_value is not None:
                changes["proposed_value"] = decision.new_value
            if decision.new_end_date is not None:
                validate_dates(proposal.proposed_start_date, decision.new_end_date)
                changes["proposed_end_date"] = decision.new_end_date

        with self._uow.savepoint():
            updated = self._proposals.compare_and_set(
                proposal.tenant_id, proposal.id, changes, expected_status=RenewalStatus.PENDING
            )
            contract = self._lifecycle.mark_renewal_status(
                proposal.tenant_id, proposal.contract_id, RenewalStatus.APPROVED
            )
            self._lifecycle.record_activity(
                contract,
                ActivityType.RENEWAL_APPROVED,
                f"Renewal approved until {updated.proposed_end_date.isoformat()}",
                actor,
                {"proposal_id": proposal.id, "modified_terms": decision.modify_terms},
            )
            return self._executor.execute(proposal.tenant_id, updated, actor)

    def _decline(
        self, proposal: RenewalProposal, actor: str, decision: ProposalDecision
    ) -> RenewalProposal:
        now = self._clock.now()
        changes: dict[str, Any] = {
            "status": RenewalStatus.DECLINED,
            "declined_by": actor,
            "declined_at": now,
            "decline_reason": decision.decline_reason,
            "processed_at": now,
            "updated_at": now,
        }
        if decision.notes is not None:
            changes["notes"] = decision.notes

        with self._uow.savepoint():
            updated = self._proposals.compare_and_set(
                proposal.tenant_id, proposal.id, changes, expected_status=RenewalStatus.PENDING
            )
            contract = self._lifecycle.mark_renewal_status(
                proposal.tenant_id, proposal.contract_id, RenewalStatus.DECLINED
            )
            self._lifecycle.record_activity(
                contract,
                ActivityType.RENEWAL_DECLINED,
                f"Renewal declined. Reason: {decision.decline_reason or 'No reason provided'}",
                actor,
                {"proposal_id": proposal.id, "reason": decision.decline_reason},
            )
        return updated

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _rules_or_none(self, tenant_id: str, rule_id: str | None) -> RenewalRule | None:
        if rule_id is None:
            return None
        try:
            return self._rules.get_rule(tenant_id, rule_id)
        except NotFoundError:
            return None

    def _notify(self, rule: RenewalRule | None, proposal: RenewalProposal, event: str) -> bool:
        """Dispatch *event* when the rule notifies. Returns whether a dispatch was attempted."""
        if rule is None or not rule.notification_settings.enabled:
            return False

        settings = rule.notification_settings
        try:
            self._notifier.notify(
                settings.recipients,
                settings.channels,
                settings.template or _DEFAULT_TEMPLATE,
                {
                    "event": event,
                    "proposal_id": proposal.id,
                    "contract_id": proposal.contract_id,
                    "status": proposal.status.value,
                    "proposed_end_date": proposal.proposed_end_date.isoformat(),
                    "proposed_value": (
                        str(proposal.proposed_value)
                        if proposal.proposed_value is not None
                        else None
                    ),
                },
            )
        except Exception as exc:
            logger.warning(
                "renewal_notification_failed",
                tenant_id=proposal.tenant_id,
                proposal_id=proposal.id,
                rule_id=rule.id,
                notification_event=event,
                error=str(exc),
            )
        return True
