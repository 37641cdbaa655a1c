"""Structural checks on contract parties and dates."""

from __future__ import annotations

from datetime import date

from contract_engine.errors import ValidationError
from contract_engine.models import ContractParty, PartyRole


def validate_parties(parties: list[ContractParty]) -> None:
    """At least two parties, unique emails (case-insensitive), one CLIENT and one COMPANY."""
    if len(parties) < 2:
        raise ValidationError("Contract must have at least 2 parties")

    emails = [p.email.strip().lower() for p in parties]
    if len(set(emails)) != len(emails):
        raise ValidationError("Party emails must be unique")

    roles = {p.role for p in parties}
    if PartyRole.CLIENT not in roles or PartyRole.COMPANY not in roles:
        raise ValidationError(
            "Contract must have at least one CLIENT and one COMPANY party"
        )


def validate_dates(start_date: date | None, end_date: date | None) -> None:
    if start_date is not None and end_date is not None and end_date <= start_date:
        raise ValidationError("End date must be after start date")
