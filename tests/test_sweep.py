"""Renewal sweep tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from conftest import ACTOR, TENANT, FailingNotifier
from contract_engine.collaborators import LocalSignatureProvider
from contract_engine.errors import ConflictError
from contract_engine.models import (
    ContractStatus,
    ContractType,
    ContractUpdate,
    ProposalAction,
    ProposalDecision,
    ProposalFilter,
    RenewalStatus,
)
from contract_engine.renewal.sweep import sweep_key
from contract_engine.wiring import build_services

# NOW is 2025-01-01.
IN_28_DAYS = date(2025, 1, 29)
IN_29_DAYS = date(2025, 1, 30)
IN_30_DAYS = date(2025, 1, 31)
IN_31_DAYS = date(2025, 2, 1)


def _proposals(services, contract_id=None):
    return services.proposals.list_proposals(TENANT, ProposalFilter(contract_id=contract_id)).items


def test_stock_rule_auto_renews_end_to_end(services, notifier, make_active_contract):
    services.rules.seed_default_rules(TENANT, ACTOR)
    contract = make_active_contract(value=Decimal("300"), end_date=IN_30_DAYS)

    result = services.sweep.check_and_create_renewals(TENANT)

    assert (result.created, result.processed, result.notifications) == (1, 1, 1)
    assert result.failures == []
    [proposal] = _proposals(services, contract.id)
    assert proposal.status == RenewalStatus.AUTO_RENEWED
    assert proposal.proposed_value == Decimal("315.00")
    assert proposal.metadata == {
        "rule_applied": "Standard Membership Auto-Renewal",
        "auto_generated": True,
    }

    renewed = services.lifecycle.get_contract(TENANT, contract.id)
    assert renewed.status == ContractStatus.ACTIVE
    assert renewed.end_date == date(2026, 1, 31)
    assert renewed.value == Decimal("315.00")
    assert notifier.sent[0]["template"] == "renewal-notification"


def test_sweep_is_idempotent(services, clock, make_rule, make_active_contract):
    make_rule()
    contract = make_active_contract(end_date=IN_30_DAYS)

    first = services.sweep.check_and_create_renewals(TENANT)
    second = services.sweep.check_and_create_renewals(TENANT)

    assert first.created == 1
    assert second.created == 0
    assert second.skipped == 1
    assert len(_proposals(services, contract.id)) == 1

    # Still inside the one-day window tomorrow, still no duplicate.
    clock.advance(days=1)
    third = services.sweep.check_and_create_renewals(TENANT)
    assert third.created == 0
    assert len(_proposals(services, contract.id)) == 1


def test_sweep_acts_only_inside_one_day_window(services, make_rule, make_active_contract):
    make_rule()
    inside = [
        make_active_contract(end_date=IN_29_DAYS),
        make_active_contract(end_date=IN_30_DAYS),
    ]
    outside = [
        make_active_contract(end_date=IN_28_DAYS),
        make_active_contract(end_date=IN_31_DAYS),
    ]

    result = services.sweep.check_and_create_renewals(TENANT)

    assert result.created == 2
    assert all(len(_proposals(services, c.id)) == 1 for c in inside)
    assert all(_proposals(services, c.id) == [] for c in outside)


def test_sweep_skips_ineligible_and_inactive_contracts(
    services, make_rule, make_contract, make_active_contract
):
    make_rule(conditions={"exclude_client_ids": ["client-9"]})
    make_active_contract(type=ContractType.SERVICE, end_date=IN_30_DAYS)
    make_contract(end_date=IN_30_DAYS)
    suspended = make_active_contract(end_date=IN_30_DAYS)
    services.lifecycle.suspend_contract(TENANT, suspended.id, ACTOR)
    excluded = make_active_contract(end_date=IN_30_DAYS)
    parties = [
        p.model_copy(update={"client_id": "client-9"}) if p.client_id else p
        for p in excluded.parties
    ]
    services.lifecycle.update_contract(TENANT, excluded.id, ACTOR, ContractUpdate(parties=parties))

    result = services.sweep.check_and_create_renewals(TENANT)

    assert result.created == 0
    assert _proposals(services) == []


def test_sweep_ignores_manual_and_inactive_rules(services, make_rule, make_active_contract):
    make_rule(trigger="MANUAL", trigger_days=None)
    make_rule(is_active=False)
    make_active_contract(end_date=IN_30_DAYS)

    result = services.sweep.check_and_create_renewals(TENANT)
    assert result.created == 0


def test_contract_with_existing_decided_proposal_is_skipped(
    services, make_rule, make_active_contract
):
    make_rule()
    contract = make_active_contract(end_date=IN_30_DAYS)
    proposal = services.proposals.create_renewal_proposal(TENANT, contract.id, ACTOR)
    services.proposals.process_renewal_proposal(
        TENANT, proposal.id, "bob", ProposalDecision(action=ProposalAction.DECLINE)
    )

    result = services.sweep.check_and_create_renewals(TENANT)

    assert result.created == 0
    assert result.skipped == 1


def test_overlapping_rules_create_one_proposal(services, make_rule, make_active_contract):
    make_rule(name="first")
    make_rule(name="second")
    contract = make_active_contract(end_date=IN_30_DAYS)

    result = services.sweep.check_and_create_renewals(TENANT)

    assert result.created == 1
    assert result.skipped == 1
    assert len(_proposals(services, contract.id)) == 1


def test_item_failure_does_not_abort_sweep(services, monkeypatch, make_rule, make_active_contract):
    rule = make_rule()
    broken = make_active_contract(title="Broken", end_date=IN_29_DAYS)
    healthy = make_active_contract(title="Healthy", end_date=IN_30_DAYS)

    original = services.proposals.create_renewal_proposal

    def flaky(tenant_id, contract_id, actor, rule_id=None, *, sweep_key=None):
        if contract_id == broken.id:
            raise RuntimeError("store unavailable")
        return original(tenant_id, contract_id, actor, rule_id, sweep_key=sweep_key)

    monkeypatch.setattr(services.proposals, "create_renewal_proposal", flaky)

    result = services.sweep.check_and_create_renewals(TENANT)

    assert result.created == 1
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert (failure.contract_id, failure.rule_id) == (broken.id, rule.id)
    assert failure.error == "store unavailable"
    assert len(_proposals(services, healthy.id)) == 1


def test_notifier_outage_does_not_fail_sweep_item(
    session, settings, clock, make_active_contract
):
    failing = build_services(
        session,
        settings,
        clock=clock,
        notifier=FailingNotifier(),
        signer=LocalSignatureProvider(),
    )
    failing.rules.seed_default_rules(TENANT, ACTOR)
    contract = make_active_contract(value=Decimal("300"), end_date=IN_30_DAYS)

    result = failing.sweep.check_and_create_renewals(TENANT)

    assert (result.created, result.processed) == (1, 1)
    assert result.failures == []
    [proposal] = _proposals(failing, contract.id)
    assert proposal.status == RenewalStatus.AUTO_RENEWED
    assert proposal.proposed_value == Decimal("315.00")
    assert failing.lifecycle.get_contract(TENANT, contract.id).end_date == date(2026, 1, 31)


def test_lost_race_counts_as_skipped(services, monkeypatch, make_rule, make_active_contract):
    make_rule()
    make_active_contract(end_date=IN_30_DAYS)

    def raced(*args, **kwargs):
        raise ConflictError("A renewal proposal for this contract was created concurrently")

    monkeypatch.setattr(services.proposals, "create_renewal_proposal", raced)

    result = services.sweep.check_and_create_renewals(TENANT)
    assert result.created == 0
    assert result.skipped == 1
    assert result.failures == []


def test_sweep_key_requires_an_end_date(make_rule, make_contract):
    rule = make_rule()
    open_ended = make_contract(end_date=None)

    with pytest.raises(ValueError, match="has no end date"):
        sweep_key(rule, open_ended)
    dated = make_contract(end_date=IN_30_DAYS)
    assert sweep_key(rule, dated) == f"{rule.id}:{dated.id}:2025-01-31"
