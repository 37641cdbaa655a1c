"""Append-only contract activity log."""

from __future__ import annotations

from abc import ABC, abstractmethod

from sqlalchemy import select
from sqlalchemy.orm import Session

from contract_engine.db.tables import ActivityRow
from contract_engine.models import ContractActivity
from contract_engine.store.base import to_json


class ActivityLog(ABC):
    """Audit trail keyed by contract id, ordered by time, never mutated."""

    @abstractmethod
    def append(self, activity: ContractActivity) -> ContractActivity: ...

    @abstractmethod
    def list_by_contract(self, tenant_id: str, contract_id: str) -> list[ContractActivity]: ...


def _to_model(row: ActivityRow) -> ContractActivity:
    return ContractActivity(
        id=row.id,
        tenant_id=row.tenant_id,
        contract_id=row.contract_id,
        type=row.type,
        description=row.description,
        performed_by=row.performed_by,
        performed_at=row.performed_at,
        metadata=row.meta,
    )


class SqlActivityLog(ActivityLog):
    def __init__(self, session: Session) -> None:
        self._session = session

    def append(self, activity: ContractActivity) -> ContractActivity:
        row = ActivityRow(
            tenant_id=activity.tenant_id,
            contract_id=activity.contract_id,
            type=activity.type.value,
            description=activity.description,
            performed_by=activity.performed_by,
            performed_at=activity.performed_at,
            meta=to_json(activity.metadata),
        )
        self._session.add(row)
        self._session.flush()
        return _to_model(row)

    def list_by_contract(self, tenant_id: str, contract_id: str) -> list[ContractActivity]:
        stmt = (
            select(ActivityRow)
            .where(ActivityRow.tenant_id == tenant_id, ActivityRow.contract_id == contract_id)
            .order_by(ActivityRow.performed_at.asc(), ActivityRow.id.asc())
        )
        return [_to_model(row) for row in self._session.scalars(stmt)]
