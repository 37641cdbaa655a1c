"""Transition table for the contract lifecycle state machine.

Pure functions only: the lifecycle service asks this module whether an
action is allowed from the contract's current status and which status
it lands in. Any (status, action) pair absent from the table is
rejected with :class:`ValidationError`.

State graph::

    DRAFT -> PENDING_SIGNATURE -> ACTIVE <-> SUSPENDED
                                    |
                                    v
                                 EXPIRED

    any of DRAFT, PENDING_SIGNATURE, ACTIVE, SUSPENDED, EXPIRED -> TERMINATED
    any of DRAFT, PENDING_SIGNATURE, SUSPENDED, EXPIRED         -> CANCELLED

TERMINATED and CANCELLED are absorbing.
"""

from __future__ import annotations

from enum import Enum

from contract_engine.errors import ValidationError
from contract_engine.models import ContractStatus


class ContractAction(str, Enum):
    SEND_FOR_SIGNATURE = "send_for_signature"
    RECORD_SIGNATURE = "record_signature"
    ACTIVATE = "activate"
    SUSPEND = "suspend"
    REACTIVATE = "reactivate"
    TERMINATE = "terminate"
    CANCEL = "cancel"
    EXPIRE = "expire"
    UPDATE = "update"


TERMINAL_STATUSES = frozenset({ContractStatus.TERMINATED, ContractStatus.CANCELLED})

_NON_TERMINAL = frozenset(ContractStatus) - TERMINAL_STATUSES

ALLOWED_FROM: dict[ContractAction, frozenset[ContractStatus]] = {
    ContractAction.SEND_FOR_SIGNATURE: frozenset({ContractStatus.DRAFT}),
    ContractAction.RECORD_SIGNATURE: frozenset({ContractStatus.PENDING_SIGNATURE}),
    ContractAction.ACTIVATE: frozenset({ContractStatus.PENDING_SIGNATURE}),
    ContractAction.SUSPEND: frozenset({ContractStatus.ACTIVE}),
    ContractAction.REACTIVATE: frozenset({ContractStatus.SUSPENDED}),
    ContractAction.TERMINATE: _NON_TERMINAL,
    ContractAction.CANCEL: _NON_TERMINAL - {ContractStatus.ACTIVE},
    ContractAction.EXPIRE: frozenset({ContractStatus.ACTIVE}),
    ContractAction.UPDATE: _NON_TERMINAL,
}

# Actions that move the contract; the rest leave the status unchanged.
TARGET_STATUS: dict[ContractAction, ContractStatus] = {
    ContractAction.SEND_FOR_SIGNATURE: ContractStatus.PENDING_SIGNATURE,
    ContractAction.ACTIVATE: ContractStatus.ACTIVE,
    ContractAction.SUSPEND: ContractStatus.SUSPENDED,
    ContractAction.REACTIVATE: ContractStatus.ACTIVE,
    ContractAction.TERMINATE: ContractStatus.TERMINATED,
    ContractAction.CANCEL: ContractStatus.CANCELLED,
    ContractAction.EXPIRE: ContractStatus.EXPIRED,
}

_REJECTION: dict[ContractAction, str] = {
    ContractAction.SEND_FOR_SIGNATURE: "Only draft contracts can be sent for signature",
    ContractAction.RECORD_SIGNATURE: "Signatures can only be recorded on contracts pending signature",
    ContractAction.ACTIVATE: "Only contracts pending signature can be activated",
    ContractAction.SUSPEND: "Only active contracts can be suspended",
    ContractAction.REACTIVATE: "Only suspended contracts can be reactivated",
    ContractAction.TERMINATE: "Contract is already terminated or cancelled",
    ContractAction.CANCEL: "Only non-active contracts that are not terminated can be cancelled",
    ContractAction.EXPIRE: "Only active contracts can expire",
    ContractAction.UPDATE: "Cannot update terminated or cancelled contract",
}


def can_apply(action: ContractAction, status: ContractStatus) -> bool:
    return status in ALLOWED_FROM[action]


def ensure_allowed(action: ContractAction, status: ContractStatus) -> None:
    """Raise :class:`ValidationError` unless *action* is valid from *status*."""
    if not can_apply(action, status):
        message = _REJECTION[action]
        if action == ContractAction.CANCEL and status == ContractStatus.ACTIVE:
            message = "Active contracts must be terminated, not cancelled"
        raise ValidationError(f"{message} (current status: {status.value})")


def target_status(action: ContractAction, current: ContractStatus) -> ContractStatus:
    return TARGET_STATUS.get(action, current)
