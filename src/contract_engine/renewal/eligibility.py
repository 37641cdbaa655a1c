"""Rule eligibility: does a renewal rule apply to a contract?

Pure functions over the contract and rule data shapes; no store access.
"""

from __future__ import annotations

from typing import Iterable

from contract_engine.models import Contract, RenewalRule


def is_eligible(contract: Contract, rule: RenewalRule) -> bool:
    """Check whether *rule* applies to *contract*.

    1. The contract's type must be one of the rule's contract types.
    2. Value bounds (``min_contract_value`` / ``max_contract_value``) must
       hold; both are skipped when the contract has no value.
    3. The contract's CLIENT party must not be in ``exclude_client_ids``.
    """
    if contract.type not in rule.contract_types:
        return False

    conditions = rule.conditions
    if conditions is None:
        return True

    if contract.value is not None:
        if conditions.min_contract_value is not None and contract.value < conditions.min_contract_value:
            return False
        if conditions.max_contract_value is not None and contract.value > conditions.max_contract_value:
            return False

    client = contract.client_party()
    if client is not None and client.client_id and client.client_id in conditions.exclude_client_ids:
        return False

    return True


def first_eligible_rule(rules: Iterable[RenewalRule], contract: Contract) -> RenewalRule | None:
    """First active rule (in the given order) that applies to *contract*."""
    for rule in rules:
        if rule.is_active and is_eligible(contract, rule):
            return rule
    return None
