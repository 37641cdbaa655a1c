"""Carries out an approved renewal against the original contract."""

from __future__ import annotations

import structlog

from contract_engine.errors import ValidationError
from contract_engine.lifecycle import ContractLifecycleService
from contract_engine.models import (
    Contract,
    ContractCreate,
    ContractStatus,
    ContractUpdate,
    RenewalProposal,
    RenewalType,
)
from contract_engine.store.proposals import ProposalRepository

logger = structlog.get_logger(__name__)

RENEWED_REASON = "Contract renewed with new contract"


class RenewalExecutor:
    """Applies APPROVED / AUTO_RENEWED proposals.

    EXTEND_CURRENT and RENEGOTIATE rewrite the original contract's end date
    and value in place. NEW_CONTRACT creates a linked successor contract and
    terminates the original.
    """

    def __init__(
        self,
        lifecycle: ContractLifecycleService,
        proposals: ProposalRepository,
    ) -> None:
        self._lifecycle = lifecycle
        self._proposals = proposals

    def execute(self, tenant_id: str, proposal: RenewalProposal, actor: str) -> RenewalProposal:
        original = self._lifecycle.get_contract(tenant_id, proposal.contract_id)
        if original.status != ContractStatus.ACTIVE:
            raise ValidationError("Only active contracts can be renewed")

        if proposal.renewal_type == RenewalType.NEW_CONTRACT:
            successor = self._create_successor(tenant_id, original, proposal, actor)
            self._lifecycle.terminate_contract(
                tenant_id, original.id, actor, reason=RENEWED_REASON
            )
            proposal = self._proposals.compare_and_set(
                tenant_id, proposal.id, {"successor_contract_id": successor.id}
            )
        else:
            self._lifecycle.update_contract(
                tenant_id,
                original.id,
                actor,
                ContractUpdate(end_date=proposal.proposed_end_date, value=proposal.proposed_value),
            )

        logger.info(
            "renewal_executed",
            tenant_id=tenant_id,
            proposal_id=proposal.id,
            contract_id=original.id,
            renewal_type=proposal.renewal_type.value,
            successor_contract_id=proposal.successor_contract_id,
        )
        return proposal

    def _create_successor(
        self,
        tenant_id: str,
        original: Contract,
        proposal: RenewalProposal,
        actor: str,
    ) -> Contract:
        # Signatures do not carry over; the successor goes through signing again.
        parties = [p.model_copy(update={"signed_at": None}) for p in original.parties]
        return self._lifecycle.create_contract(
            tenant_id,
            actor,
            ContractCreate(
                type=original.type,
                title=f"{original.title} (Renewed)",
                content=original.content,
                parties=parties,
                terms=original.terms,
                start_date=proposal.proposed_start_date,
                end_date=proposal.proposed_end_date,
                auto_renewal=original.auto_renewal,
                renewal_period=original.renewal_period,
                value=proposal.proposed_value,
                currency=original.currency,
                metadata={
                    **original.metadata,
                    "renewedFrom": original.id,
                    "renewalProposalId": proposal.id,
                },
                template_id=original.template_id,
            ),
        )
