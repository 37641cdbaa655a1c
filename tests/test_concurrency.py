"""Store-level guards against racing writers, and activity immutability."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from conftest import ACTOR, NOW, TENANT
from contract_engine.db.tables import ActivityRow
from contract_engine.errors import (
    ConflictError,
    ImmutabilityViolationError,
    NotFoundError,
)
from contract_engine.models import (
    ActivityType,
    ContractStatus,
    ProposalAction,
    ProposalDecision,
    RenewalProposal,
    RenewalStatus,
)
from contract_engine.store import SqlContractRepository, SqlProposalRepository


def _proposal(contract, status=RenewalStatus.PENDING):
    return RenewalProposal(
        tenant_id=TENANT,
        contract_id=contract.id,
        current_contract_end_date=contract.end_date,
        proposed_start_date=contract.end_date,
        proposed_end_date=contract.end_date.replace(year=contract.end_date.year + 1),
        renewal_period=12,
        status=status,
        created_by=ACTOR,
        created_at=NOW,
        updated_at=NOW,
    )


# ---------------------------------------------------------------------------
# At most one pending proposal
# ---------------------------------------------------------------------------


def test_racing_proposal_requests_cannot_both_insert(services, monkeypatch, make_active_contract):
    """Both callers pass the pending check; the unique index stops the second insert."""
    contract = make_active_contract()
    monkeypatch.setattr(
        SqlProposalRepository, "has_pending", lambda self, tenant_id, contract_id: False
    )

    services.proposals.create_renewal_proposal(TENANT, contract.id, ACTOR)
    with pytest.raises(ConflictError):
        services.proposals.create_renewal_proposal(TENANT, contract.id, ACTOR)

    assert services.proposals.list_proposals(TENANT).total == 1
    stored = services.lifecycle.get_contract(TENANT, contract.id)
    assert stored.renewal_status == RenewalStatus.PENDING


def test_decided_proposals_do_not_block_a_new_pending_one(session, make_active_contract):
    repo = SqlProposalRepository(session)
    contract = make_active_contract()

    repo.create(_proposal(contract, RenewalStatus.DECLINED))
    repo.create(_proposal(contract, RenewalStatus.DECLINED))
    repo.create(_proposal(contract))
    with pytest.raises(ConflictError):
        repo.create(_proposal(contract))


def test_sweep_key_is_unique(session, make_active_contract):
    repo = SqlProposalRepository(session)
    first = make_active_contract()
    second = make_active_contract()

    repo.create(_proposal(first, RenewalStatus.AUTO_RENEWED), sweep_key="rule-1:c:2025-01-31")
    with pytest.raises(ConflictError):
        repo.create(_proposal(second, RenewalStatus.AUTO_RENEWED), sweep_key="rule-1:c:2025-01-31")

    # The failed insert only rolled back its own savepoint.
    assert repo.exists_for_contract(TENANT, first.id)
    assert not repo.exists_for_contract(TENANT, second.id)


# ---------------------------------------------------------------------------
# Optimistic concurrency on transitions
# ---------------------------------------------------------------------------


def test_stale_transition_loses(services, monkeypatch, make_active_contract):
    lc = services.lifecycle
    contract = make_active_contract()
    stale = lc.get_contract(TENANT, contract.id)

    lc.suspend_contract(TENANT, contract.id, ACTOR)
    monkeypatch.setattr(lc, "get_contract", lambda tenant_id, contract_id: stale)

    with pytest.raises(ConflictError):
        lc.suspend_contract(TENANT, contract.id, "bob")
    monkeypatch.undo()

    activity = lc.get_activity(TENANT, contract.id)
    assert sum(a.type == ActivityType.CONTRACT_SUSPENDED for a in activity) == 1


def test_double_activation_only_one_wins(session, make_contract, services):
    lc = services.lifecycle
    contract = lc.send_for_signature(TENANT, make_contract().id, ACTOR)
    repo = SqlContractRepository(session)

    repo.compare_and_set(
        TENANT,
        contract.id,
        {"status": ContractStatus.ACTIVE},
        expected_status=ContractStatus.PENDING_SIGNATURE,
        expected_version=contract.version,
    )
    with pytest.raises(ConflictError):
        repo.compare_and_set(
            TENANT,
            contract.id,
            {"status": ContractStatus.ACTIVE},
            expected_status=ContractStatus.PENDING_SIGNATURE,
            expected_version=contract.version,
        )
    assert lc.get_contract(TENANT, contract.id).version == contract.version + 1


def test_compare_and_set_is_tenant_scoped(session, make_contract):
    contract = make_contract()
    with pytest.raises(NotFoundError):
        SqlContractRepository(session).compare_and_set(
            "tenant-b", contract.id, {"title": "hijacked"}
        )


def test_stale_proposal_decision_loses(services, monkeypatch, make_active_contract):
    contract = make_active_contract()
    proposal = services.proposals.create_renewal_proposal(TENANT, contract.id, ACTOR)
    services.proposals.process_renewal_proposal(
        TENANT, proposal.id, "bob", ProposalDecision(action=ProposalAction.DECLINE)
    )

    monkeypatch.setattr(
        services.proposals, "get_proposal", lambda tenant_id, proposal_id: proposal
    )
    with pytest.raises(ConflictError):
        services.proposals.process_renewal_proposal(
            TENANT, proposal.id, "carol", ProposalDecision(action=ProposalAction.APPROVE)
        )
    monkeypatch.undo()

    assert services.proposals.get_proposal(TENANT, proposal.id).status == RenewalStatus.DECLINED
    assert services.lifecycle.get_contract(TENANT, contract.id).end_date == contract.end_date


# ---------------------------------------------------------------------------
# Append-only activity
# ---------------------------------------------------------------------------


def _first_activity_row(session, contract_id):
    return session.scalars(
        select(ActivityRow).where(ActivityRow.contract_id == contract_id)
    ).first()


def test_activity_rows_cannot_be_updated(session, make_contract):
    contract = make_contract()
    row = _first_activity_row(session, contract.id)

    row.description = "rewritten history"
    with pytest.raises(ImmutabilityViolationError):
        session.flush()


def test_activity_rows_cannot_be_deleted(session, make_contract):
    contract = make_contract()
    row = _first_activity_row(session, contract.id)

    session.delete(row)
    with pytest.raises(ImmutabilityViolationError):
        session.flush()
