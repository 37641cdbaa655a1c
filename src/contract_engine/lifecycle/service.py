"""Contract lifecycle service.

Owns every mutation of a contract's status. Each transition follows the
same sequence:

1. Load the contract (tenant-scoped; unknown ids raise ``NotFoundError``).
2. Check the transition table and any action-specific guard
   (``ValidationError`` on violation, nothing is written).
3. Compare-and-set the new status against the status just read, so two
   racing requests cannot both succeed from the same state
   (``ConflictError`` for the loser).
4. Append a :class:`ContractActivity` record.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

import structlog

from contract_engine.clock import Clock
from contract_engine.collaborators import SignatureProvider
from contract_engine.errors import ContractEngineError, NotFoundError, ValidationError
from contract_engine.lifecycle.transitions import (
    ContractAction,
    ensure_allowed,
    target_status,
)
from contract_engine.lifecycle.validation import validate_dates, validate_parties
from contract_engine.models import (
    ActivityType,
    Contract,
    ContractActivity,
    ContractCreate,
    ContractFilter,
    ContractStatus,
    ContractUpdate,
    Page,
    RenewalStatus,
)
from contract_engine.store.activity import ActivityLog
from contract_engine.store.contracts import ContractRepository

logger = structlog.get_logger(__name__)

_NO_REASON = "No reason provided"

# ContractUpdate fields that may not be explicitly cleared.
_REQUIRED_FIELDS = frozenset(
    {"title", "content", "parties", "terms", "start_date", "auto_renewal", "currency", "metadata"}
)


class ContractLifecycleService:
    """Guarded state transitions and CRUD for contracts."""

    def __init__(
        self,
        contracts: ContractRepository,
        activity: ActivityLog,
        signer: SignatureProvider,
        clock: Clock,
        default_currency: str = "USD",
    ) -> None:
        self._contracts = contracts
        self._activity = activity
        self._signer = signer
        self._clock = clock
        self._default_currency = default_currency

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def create_contract(self, tenant_id: str, actor: str, data: ContractCreate) -> Contract:
        validate_parties(data.parties)
        validate_dates(data.start_date, data.end_date)

        now = self._clock.now()
        contract = self._contracts.add(
            Contract(
                tenant_id=tenant_id,
                type=data.type,
                title=data.title,
                content=data.content,
                status=ContractStatus.DRAFT,
                parties=data.parties,
                terms=data.terms,
                start_date=data.start_date,
                end_date=data.end_date,
                auto_renewal=data.auto_renewal,
                renewal_period=data.renewal_period,
                renewal_status=RenewalStatus.NONE,
                value=data.value,
                currency=data.currency or self._default_currency,
                metadata=data.metadata,
                template_id=data.template_id,
                quotation_id=data.quotation_id,
                opportunity_id=data.opportunity_id,
                created_by=actor,
                created_at=now,
                updated_at=now,
            )
        )

        self._record(
            contract,
            ActivityType.CONTRACT_CREATED,
            f'Contract "{contract.title}" created',
            actor,
            {"type": contract.type.value, "parties": len(contract.parties), "value": contract.value},
        )
        logger.info(
            "contract_created",
            tenant_id=tenant_id,
            contract_id=contract.id,
            type=contract.type.value,
        )
        return contract

    def get_contract(self, tenant_id: str, contract_id: str) -> Contract:
        contract = self._contracts.get(tenant_id, contract_id)
        if contract is None:
            raise NotFoundError("Contract", contract_id)
        return contract

    def list_contracts(self, tenant_id: str, query: ContractFilter | None = None) -> Page[Contract]:
        return self._contracts.list(tenant_id, query or ContractFilter(), self._clock.today())

    def get_expiring_contracts(
        self,
        tenant_id: str,
        days: int = 30,
        status: ContractStatus | None = None,
    ) -> list[Contract]:
        """Contracts whose end date falls within the next *days* days."""
        return self._contracts.list_expiring(tenant_id, self._clock.today(), days, status)

    def get_activity(self, tenant_id: str, contract_id: str) -> list[ContractActivity]:
        self.get_contract(tenant_id, contract_id)
        return self._activity.list_by_contract(tenant_id, contract_id)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update_contract(
        self,
        tenant_id: str,
        contract_id: str,
        actor: str,
        patch: ContractUpdate,
    ) -> Contract:
        contract = self.get_contract(tenant_id, contract_id)
        ensure_allowed(ContractAction.UPDATE, contract.status)

        changes: dict[str, Any] = {
            name: getattr(patch, name) for name in sorted(patch.model_fields_set)
        }
        cleared = sorted(k for k, v in changes.items() if v is None and k in _REQUIRED_FIELDS)
        if cleared:
            raise ValidationError(f"Fields cannot be cleared: {', '.join(cleared)}")
        if not changes:
            return contract

        if "parties" in changes:
            validate_parties(changes["parties"])
        validate_dates(
            changes.get("start_date", contract.start_date),
            changes.get("end_date", contract.end_date),
        )

        updated = self._contracts.compare_and_set(
            tenant_id,
            contract_id,
            {**changes, "updated_at": self._clock.now()},
            expected_version=contract.version,
        )
        self._record(
            updated,
            ActivityType.CONTRACT_UPDATED,
            "Contract updated",
            actor,
            {"updated_fields": list(changes)},
        )
        logger.info(
            "contract_updated",
            tenant_id=tenant_id,
            contract_id=contract_id,
            fields=list(changes),
        )
        return updated

    def mark_renewal_status(
        self, tenant_id: str, contract_id: str, status: RenewalStatus
    ) -> Contract:
        """Record the outcome of the latest renewal proposal on the contract."""
        return self._contracts.compare_and_set(
            tenant_id,
            contract_id,
            {"renewal_status": status, "updated_at": self._clock.now()},
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def send_for_signature(self, tenant_id: str, contract_id: str, actor: str) -> Contract:
        contract = self.get_contract(tenant_id, contract_id)
        ensure_allowed(ContractAction.SEND_FOR_SIGNATURE, contract.status)
        workflow_id = self._signer.request_signature(contract)

        return self._apply(
            contract,
            ContractAction.SEND_FOR_SIGNATURE,
            actor,
            ActivityType.SIGNATURE_REQUESTED,
            "Contract sent for signature",
            {
                "workflow_id": workflow_id,
                "parties": [{"name": p.name, "email": p.email} for p in contract.parties],
            },
            changes={"signature_workflow_id": workflow_id},
        )

    def record_signature(
        self,
        tenant_id: str,
        contract_id: str,
        party_id: str,
        actor: str,
        signed_at: datetime | None = None,
    ) -> Contract:
        """Write back a party's signature reported by the signing collaborator."""
        contract = self.get_contract(tenant_id, contract_id)
        ensure_allowed(ContractAction.RECORD_SIGNATURE, contract.status)

        party = next((p for p in contract.parties if p.id == party_id), None)
        if party is None:
            raise NotFoundError("Contract party", party_id)
        if party.signed_at is not None:
            raise ValidationError(f"Party {party_id} has already signed")

        when = signed_at or self._clock.now()
        parties = [
            p.model_copy(update={"signed_at": when}) if p.id == party_id else p
            for p in contract.parties
        ]
        return self._apply(
            contract,
            ContractAction.RECORD_SIGNATURE,
            actor,
            ActivityType.CONTRACT_SIGNED,
            f"Contract signed by {party.name}",
            {"party_id": party_id, "email": party.email, "signed_at": when},
            changes={"parties": parties},
        )

    def activate_contract(self, tenant_id: str, contract_id: str, actor: str) -> Contract:
        def _all_signed(contract: Contract) -> None:
            if not self._signer.is_fully_signed(contract):
                raise ValidationError(
                    "All parties must sign before contract can be activated"
                )

        now = self._clock.now()
        return self._transition(
            tenant_id,
            contract_id,
            ContractAction.ACTIVATE,
            actor,
            ActivityType.CONTRACT_ACTIVATED,
            "Contract activated and is now in effect",
            {"activated_at": now},
            changes={"activated_at": now},
            guard=_all_signed,
        )

    def suspend_contract(
        self, tenant_id: str, contract_id: str, actor: str, reason: str | None = None
    ) -> Contract:
        return self._transition(
            tenant_id,
            contract_id,
            ContractAction.SUSPEND,
            actor,
            ActivityType.CONTRACT_SUSPENDED,
            f"Contract suspended. Reason: {reason or _NO_REASON}",
            {"reason": reason or _NO_REASON, "suspended_at": self._clock.now()},
        )

    def reactivate_contract(self, tenant_id: str, contract_id: str, actor: str) -> Contract:
        return self._transition(
            tenant_id,
            contract_id,
            ContractAction.REACTIVATE,
            actor,
            ActivityType.CONTRACT_REACTIVATED,
            "Contract reactivated",
            {"reactivated_at": self._clock.now()},
        )

    def terminate_contract(
        self,
        tenant_id: str,
        contract_id: str,
        actor: str,
        reason: str | None = None,
        termination_date: datetime | None = None,
    ) -> Contract:
        terminated_at = termination_date or self._clock.now()
        return self._transition(
            tenant_id,
            contract_id,
            ContractAction.TERMINATE,
            actor,
            ActivityType.CONTRACT_TERMINATED,
            f"Contract terminated. Reason: {reason or _NO_REASON}",
            {"reason": reason or _NO_REASON, "terminated_at": terminated_at},
            changes={"terminated_at": terminated_at},
        )

    def cancel_contract(
        self, tenant_id: str, contract_id: str, actor: str, reason: str | None = None
    ) -> Contract:
        return self._transition(
            tenant_id,
            contract_id,
            ContractAction.CANCEL,
            actor,
            ActivityType.CONTRACT_CANCELLED,
            f"Contract cancelled. Reason: {reason or _NO_REASON}",
            {"reason": reason or _NO_REASON, "cancelled_at": self._clock.now()},
        )

    def expire_contract(self, tenant_id: str, contract_id: str, actor: str) -> Contract:
        today = self._clock.today()

        def _past_end(contract: Contract) -> None:
            if contract.end_date is None or contract.end_date >= today:
                raise ValidationError("Contract has not reached its end date")

        return self._transition(
            tenant_id,
            contract_id,
            ContractAction.EXPIRE,
            actor,
            ActivityType.CONTRACT_EXPIRED,
            "Contract expired at end of term",
            {"expired_on": today},
            guard=_past_end,
        )

    def expire_overdue_contracts(self, tenant_id: str, actor: str) -> list[Contract]:
        """Move every ACTIVE contract whose end date has passed to EXPIRED."""
        expired: list[Contract] = []
        overdue = self._contracts.list_ended_before(
            tenant_id, self._clock.today(), ContractStatus.ACTIVE
        )
        for contract in overdue:
            try:
                expired.append(self.expire_contract(tenant_id, contract.id, actor))
            except ContractEngineError as exc:
                logger.warning(
                    "contract_expiry_skipped",
                    tenant_id=tenant_id,
                    contract_id=contract.id,
                    error=str(exc),
                )
        logger.info("contracts_expired", tenant_id=tenant_id, count=len(expired))
        return expired

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(
        self,
        tenant_id: str,
        contract_id: str,
        action: ContractAction,
        actor: str,
        activity_type: ActivityType,
        description: str,
        metadata: dict[str, Any],
        changes: dict[str, Any] | None = None,
        guard: Callable[[Contract], None] | None = None,
    ) -> Contract:
        contract = self.get_contract(tenant_id, contract_id)
        ensure_allowed(action, contract.status)
        if guard is not None:
            guard(contract)
        return self._apply(
            contract, action, actor, activity_type, description, metadata, changes=changes
        )

    def _apply(
        self,
        contract: Contract,
        action: ContractAction,
        actor: str,
        activity_type: ActivityType,
        description: str,
        metadata: dict[str, Any],
        changes: dict[str, Any] | None = None,
    ) -> Contract:
        new_status = target_status(action, contract.status)
        updated = self._contracts.compare_and_set(
            contract.tenant_id,
            contract.id,
            {**(changes or {}), "status": new_status, "updated_at": self._clock.now()},
            expected_status=contract.status,
            expected_version=contract.version,
        )
        self._record(updated, activity_type, description, actor, metadata)
        logger.info(
            "contract_transition",
            tenant_id=contract.tenant_id,
            contract_id=contract.id,
            action=action.value,
            from_status=contract.status.value,
            to_status=new_status.value,
            actor=actor,
        )
        return updated

    def _record(
        self,
        contract: Contract,
        activity_type: ActivityType,
        description: str,
        actor: str,
        metadata: dict[str, Any],
    ) -> ContractActivity:
        return self._activity.append(
            ContractActivity(
                tenant_id=contract.tenant_id,
                contract_id=contract.id,
                type=activity_type,
                description=description,
                performed_by=actor,
                performed_at=self._clock.now(),
                metadata=metadata,
            )
        )

    def record_activity(
        self,
        contract: Contract,
        activity_type: ActivityType,
        description: str,
        actor: str,
        metadata: dict[str, Any] | None = None,
    ) -> ContractActivity:
        """Append an activity record on behalf of another component."""
        return self._record(contract, activity_type, description, actor, metadata or {})
