"""Batch renewal sweep: turns expiring contracts into renewal proposals.

Intended to run repeatedly (e.g. once a day). Two guards keep it from piling
up duplicates: a contract is only considered on the one-day window ending
``trigger_days`` before its end date, and a contract that already has any
proposal is skipped. Each sweep-created proposal also carries a
``sweep_key`` the store keeps unique, so overlapping runs cannot both insert.
"""

from __future__ import annotations

import structlog

from contract_engine.clock import Clock
from contract_engine.errors import ConflictError
from contract_engine.lifecycle import ContractLifecycleService
from contract_engine.models import (
    Contract,
    ContractStatus,
    RenewalRule,
    RenewalStatus,
    RenewalTrigger,
    SweepFailure,
    SweepResult,
)
from contract_engine.renewal.eligibility import is_eligible
from contract_engine.renewal.proposals import RenewalProposalService
from contract_engine.renewal.rules import RenewalRuleService
from contract_engine.store.proposals import ProposalRepository

logger = structlog.get_logger(__name__)


def sweep_key(rule: RenewalRule, contract: Contract) -> str:
    if contract.end_date is None:
        raise ValueError(f"Contract {contract.id} has no end date")
    return f"{rule.id}:{contract.id}:{contract.end_date.isoformat()}"


class RenewalSweep:
    def __init__(
        self,
        rules: RenewalRuleService,
        lifecycle: ContractLifecycleService,
        proposals: ProposalRepository,
        proposal_service: RenewalProposalService,
        clock: Clock,
        *,
        lookahead_buffer_days: int = 5,
        system_actor: str = "system",
    ) -> None:
        self._rules = rules
        self._lifecycle = lifecycle
        self._proposals = proposals
        self._proposal_service = proposal_service
        self._clock = clock
        self._buffer = lookahead_buffer_days
        self._system_actor = system_actor

    def check_and_create_renewals(self, tenant_id: str) -> SweepResult:
        """Create proposals for every (active rule, expiring contract) pair in its window.

        A failure on one pair is logged and recorded in ``failures``; the
        sweep carries on with the remaining pairs.
        """
        result = SweepResult()
        today = self._clock.today()

        for rule in self._rules.list_rules(tenant_id, active_only=True):
            if rule.trigger != RenewalTrigger.DAYS_BEFORE_EXPIRY or rule.trigger_days is None:
                continue

            expiring = self._lifecycle.get_expiring_contracts(
                tenant_id, rule.trigger_days + self._buffer, status=ContractStatus.ACTIVE
            )
            for contract in expiring:
                if contract.end_date is None:
                    continue
                days_until_expiry = (contract.end_date - today).days
                if not rule.trigger_days - 1 <= days_until_expiry <= rule.trigger_days:
                    continue
                if not is_eligible(contract, rule):
                    continue
                if self._proposals.exists_for_contract(tenant_id, contract.id):
                    result.skipped += 1
                    continue

                try:
                    proposal = self._proposal_service.create_renewal_proposal(
                        tenant_id,
                        contract.id,
                        self._system_actor,
                        rule_id=rule.id,
                        sweep_key=sweep_key(rule, contract),
                    )
                except ConflictError:
                    logger.info(
                        "renewal_sweep_item_raced",
                        tenant_id=tenant_id,
                        contract_id=contract.id,
                        rule_id=rule.id,
                    )
                    result.skipped += 1
                    continue
                except Exception as exc:
                    logger.error(
                        "renewal_sweep_item_failed",
                        tenant_id=tenant_id,
                        contract_id=contract.id,
                        rule_id=rule.id,
                        error=str(exc),
                        exc_info=True,
                    )
                    result.failures.append(
                        SweepFailure(contract_id=contract.id, rule_id=rule.id, error=str(exc))
                    )
                    continue

                result.created += 1
                if proposal.status == RenewalStatus.AUTO_RENEWED:
                    result.processed += 1
                if rule.notification_settings.enabled:
                    result.notifications += 1

        logger.info(
            "renewal_sweep_completed",
            tenant_id=tenant_id,
            created=result.created,
            processed=result.processed,
            notifications=result.notifications,
            skipped=result.skipped,
            failed=len(result.failures),
        )
        return result
