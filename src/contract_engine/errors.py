"""Typed exceptions for the contract engine.

Every error carries a machine-readable ``code`` so the HTTP layer and batch
callers can branch on type instead of parsing messages::

    ContractEngineError
    +-- ValidationError             caller-fixable input / precondition
    +-- NotFoundError               unknown id within the tenant
    +-- ConflictError               lost optimistic-concurrency race
    +-- ImmutabilityViolationError  write to an append-only record
"""

from __future__ import annotations


class ContractEngineError(Exception):
    """Base exception for all contract engine errors."""

    code: str = "CONTRACT_ENGINE_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ContractEngineError):
    """Malformed input or a violated precondition (wrong state, bad parties)."""

    code: str = "VALIDATION_ERROR"


class NotFoundError(ContractEngineError):
    """Entity with the given id does not exist for the tenant."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class ConflictError(ContractEngineError):
    """A concurrent writer got there first.

    Raised when a compare-and-set update matches no row or a store-level
    unique constraint rejects an insert. Callers re-read and retry.
    """

    code: str = "CONFLICT"


class ImmutabilityViolationError(ContractEngineError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABLE_RECORD"

    def __init__(self, entity: str, entity_id: str, reason: str):
        self.entity = entity
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity} {entity_id}: {reason}")
