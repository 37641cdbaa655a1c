"""Shared repository plumbing: unit of work and conversion helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel
from sqlalchemy.orm import Session

from contract_engine.errors import ValidationError


class UnitOfWork(ABC):
    """Transaction boundary handed to services that need atomic sub-steps."""

    @abstractmethod
    def savepoint(self) -> AbstractContextManager[Any]:
        """Nested transaction: everything inside commits or rolls back together."""


class SqlUnitOfWork(UnitOfWork):
    def __init__(self, session: Session) -> None:
        self._session = session

    def savepoint(self) -> AbstractContextManager[Any]:
        return self._session.begin_nested()


def to_json(value: Any) -> Any:
    """Convert pydantic models, enums and containers into JSON-column values."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [to_json(v) for v in value]
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def order_column(table: type, sort_by: str, allowed: frozenset[str]):
    if sort_by not in allowed:
        raise ValidationError(
            f"Cannot sort by '{sort_by}'; expected one of {sorted(allowed)}"
        )
    return getattr(table, sort_by)
