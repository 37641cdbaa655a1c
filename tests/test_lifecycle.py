"""Contract lifecycle service tests."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from conftest import ACTOR, NOW, TENANT, contract_payload
from contract_engine.errors import NotFoundError, ValidationError
from contract_engine.models import (
    ActivityType,
    ContractFilter,
    ContractParty,
    ContractStatus,
    ContractType,
    ContractUpdate,
    PartyRole,
    SortOrder,
)


def _party(name, email, role, **kw):
    return ContractParty(name=name, email=email, role=role, **kw)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def test_create_contract_starts_in_draft(services):
    contract = services.lifecycle.create_contract(TENANT, ACTOR, contract_payload())

    assert contract.status == ContractStatus.DRAFT
    assert contract.tenant_id == TENANT
    assert contract.created_by == ACTOR
    assert contract.created_at == NOW
    assert contract.currency == "USD"
    assert contract.value == Decimal("1000.00")

    activity = services.lifecycle.get_activity(TENANT, contract.id)
    assert [a.type for a in activity] == [ActivityType.CONTRACT_CREATED]
    assert activity[0].metadata["parties"] == 2


def test_create_contract_requires_two_parties(services):
    payload = contract_payload(
        parties=[_party("Solo", "solo@example.com", PartyRole.CLIENT)]
    )
    with pytest.raises(ValidationError, match="at least 2 parties"):
        services.lifecycle.create_contract(TENANT, ACTOR, payload)


def test_create_contract_rejects_duplicate_emails_case_insensitively(services):
    payload = contract_payload(
        parties=[
            _party("A", "Same@Example.com", PartyRole.CLIENT),
            _party("B", " same@example.com", PartyRole.COMPANY),
        ]
    )
    with pytest.raises(ValidationError, match="unique"):
        services.lifecycle.create_contract(TENANT, ACTOR, payload)


def test_create_contract_requires_client_and_company(services):
    payload = contract_payload(
        parties=[
            _party("A", "a@example.com", PartyRole.CLIENT),
            _party("B", "b@example.com", PartyRole.CLIENT),
        ]
    )
    with pytest.raises(ValidationError, match="CLIENT and one COMPANY"):
        services.lifecycle.create_contract(TENANT, ACTOR, payload)


@pytest.mark.parametrize("end_date", [date(2024, 1, 31), date(2023, 12, 31)])
def test_create_contract_rejects_end_not_after_start(services, end_date):
    with pytest.raises(ValidationError, match="End date must be after start date"):
        services.lifecycle.create_contract(TENANT, ACTOR, contract_payload(end_date=end_date))


def test_get_contract_is_tenant_scoped(services, make_contract):
    contract = make_contract()
    with pytest.raises(NotFoundError):
        services.lifecycle.get_contract("tenant-b", contract.id)


# ---------------------------------------------------------------------------
# Signing and activation
# ---------------------------------------------------------------------------


def test_send_for_signature_records_workflow(services, make_contract):
    contract = make_contract()
    sent = services.lifecycle.send_for_signature(TENANT, contract.id, ACTOR)

    assert sent.status == ContractStatus.PENDING_SIGNATURE
    assert sent.signature_workflow_id.startswith("workflow_")
    assert sent.version == contract.version + 1


def test_activation_requires_every_signature(services, make_contract):
    lc = services.lifecycle
    contract = lc.send_for_signature(TENANT, make_contract().id, ACTOR)
    lc.record_signature(TENANT, contract.id, contract.parties[0].id, ACTOR)

    with pytest.raises(ValidationError, match="All parties must sign"):
        lc.activate_contract(TENANT, contract.id, ACTOR)
    assert lc.get_contract(TENANT, contract.id).status == ContractStatus.PENDING_SIGNATURE

    lc.record_signature(TENANT, contract.id, contract.parties[1].id, ACTOR)
    active = lc.activate_contract(TENANT, contract.id, ACTOR)
    assert active.status == ContractStatus.ACTIVE
    assert active.activated_at == NOW


def test_record_signature_rejects_unknown_and_repeat_signers(services, make_contract):
    lc = services.lifecycle
    contract = lc.send_for_signature(TENANT, make_contract().id, ACTOR)
    party_id = contract.parties[0].id

    with pytest.raises(NotFoundError):
        lc.record_signature(TENANT, contract.id, "nobody", ACTOR)

    signed_at = datetime(2024, 12, 30, 15, 0, tzinfo=timezone.utc)
    signed = lc.record_signature(TENANT, contract.id, party_id, ACTOR, signed_at=signed_at)
    assert signed.parties[0].signed_at == signed_at

    with pytest.raises(ValidationError, match="already signed"):
        lc.record_signature(TENANT, contract.id, party_id, ACTOR)


def test_full_lifecycle_activity_trail(services, make_active_contract):
    lc = services.lifecycle
    contract = make_active_contract()
    lc.suspend_contract(TENANT, contract.id, ACTOR)
    lc.reactivate_contract(TENANT, contract.id, ACTOR)
    lc.terminate_contract(TENANT, contract.id, ACTOR, reason="Client moved out")

    types = [a.type for a in lc.get_activity(TENANT, contract.id)]
    assert types == [
        ActivityType.CONTRACT_CREATED,
        ActivityType.SIGNATURE_REQUESTED,
        ActivityType.CONTRACT_SIGNED,
        ActivityType.CONTRACT_SIGNED,
        ActivityType.CONTRACT_ACTIVATED,
        ActivityType.CONTRACT_SUSPENDED,
        ActivityType.CONTRACT_REACTIVATED,
        ActivityType.CONTRACT_TERMINATED,
    ]


def test_suspend_uses_default_reason(services, make_active_contract):
    contract = make_active_contract()
    services.lifecycle.suspend_contract(TENANT, contract.id, ACTOR)

    last = services.lifecycle.get_activity(TENANT, contract.id)[-1]
    assert last.metadata["reason"] == "No reason provided"
    assert last.description.endswith("No reason provided")


def test_terminate_uses_supplied_date(services, make_contract):
    when = datetime(2025, 2, 1, tzinfo=timezone.utc)
    contract = services.lifecycle.terminate_contract(
        TENANT, make_contract().id, ACTOR, termination_date=when
    )
    assert contract.status == ContractStatus.TERMINATED
    assert contract.terminated_at == when


def test_cancel_active_contract_is_rejected(services, make_active_contract):
    contract = make_active_contract()
    with pytest.raises(ValidationError, match="must be terminated, not cancelled"):
        services.lifecycle.cancel_contract(TENANT, contract.id, ACTOR)


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


def test_update_lists_changed_fields(services, make_contract):
    contract = make_contract()
    updated = services.lifecycle.update_contract(
        TENANT, contract.id, ACTOR, ContractUpdate(title="Dedicated Desk", value=Decimal("1200"))
    )

    assert updated.title == "Dedicated Desk"
    assert updated.value == Decimal("1200")
    last = services.lifecycle.get_activity(TENANT, contract.id)[-1]
    assert last.type == ActivityType.CONTRACT_UPDATED
    assert last.metadata["updated_fields"] == ["title", "value"]


def test_update_validates_dates_against_stored_values(services, make_contract):
    contract = make_contract()
    with pytest.raises(ValidationError, match="End date must be after start date"):
        services.lifecycle.update_contract(
            TENANT, contract.id, ACTOR, ContractUpdate(end_date=date(2023, 6, 1))
        )


def test_update_revalidates_parties(services, make_contract):
    contract = make_contract()
    patch = ContractUpdate(parties=[_party("A", "a@example.com", PartyRole.CLIENT)])
    with pytest.raises(ValidationError):
        services.lifecycle.update_contract(TENANT, contract.id, ACTOR, patch)


def test_update_rejects_clearing_required_field(services, make_contract):
    contract = make_contract()
    with pytest.raises(ValidationError, match="cannot be cleared: title"):
        services.lifecycle.update_contract(TENANT, contract.id, ACTOR, ContractUpdate(title=None))


def test_empty_update_is_a_no_op(services, make_contract):
    contract = make_contract()
    same = services.lifecycle.update_contract(TENANT, contract.id, ACTOR, ContractUpdate())

    assert same == contract
    assert len(services.lifecycle.get_activity(TENANT, contract.id)) == 1


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def test_list_contracts_filters_and_paginates(services, make_contract):
    for i in range(3):
        make_contract(title=f"Membership {i}")
    make_contract(type=ContractType.SERVICE, title="Cleaning")

    page = services.lifecycle.list_contracts(
        TENANT,
        ContractFilter(type=ContractType.MEMBERSHIP, limit=2, sort_by="title", sort_order=SortOrder.ASC),
    )
    assert page.total == 3
    assert page.pages == 2
    assert [c.title for c in page.items] == ["Membership 0", "Membership 1"]

    by_client = services.lifecycle.list_contracts(TENANT, ContractFilter(client_id="client-1"))
    assert by_client.total == 4
    assert services.lifecycle.list_contracts(TENANT, ContractFilter(client_id="other")).total == 0


def test_list_contracts_rejects_unknown_sort_field(services):
    with pytest.raises(ValidationError, match="Cannot sort by"):
        services.lifecycle.list_contracts(TENANT, ContractFilter(sort_by="content"))


def test_expiring_contracts_window(services, make_contract):
    soon = make_contract(end_date=date(2025, 1, 20))
    make_contract(end_date=date(2025, 6, 1))
    make_contract(start_date=date(2024, 1, 1), end_date=date(2024, 12, 1))
    make_contract(end_date=None)

    expiring = services.lifecycle.get_expiring_contracts(TENANT, days=30)
    assert [c.id for c in expiring] == [soon.id]


def test_expire_overdue_contracts(services, make_active_contract):
    overdue = make_active_contract(start_date=date(2024, 1, 1), end_date=date(2024, 12, 31))
    current = make_active_contract()

    expired = services.lifecycle.expire_overdue_contracts(TENANT, ACTOR)

    assert [c.id for c in expired] == [overdue.id]
    assert services.lifecycle.get_contract(TENANT, overdue.id).status == ContractStatus.EXPIRED
    assert services.lifecycle.get_contract(TENANT, current.id).status == ContractStatus.ACTIVE


def test_expire_before_end_date_is_rejected(services, make_active_contract):
    contract = make_active_contract()
    with pytest.raises(ValidationError, match="not reached its end date"):
        services.lifecycle.expire_contract(TENANT, contract.id, ACTOR)
