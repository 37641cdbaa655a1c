"""Renewal rule store, preserving insertion order per tenant."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from contract_engine.db.tables import RenewalRuleRow
from contract_engine.errors import NotFoundError
from contract_engine.models import RenewalRule
from contract_engine.store.base import to_json

_JSON_FIELDS = frozenset(
    {"contract_types", "price_adjustment", "conditions", "notification_settings", "metadata"}
)


class RenewalRuleStore(ABC):
    @abstractmethod
    def add(self, rule: RenewalRule) -> RenewalRule: ...

    @abstractmethod
    def get(self, tenant_id: str, rule_id: str) -> RenewalRule | None: ...

    @abstractmethod
    def list(self, tenant_id: str, active_only: bool = False) -> list[RenewalRule]:
        """Rules in insertion order."""

    @abstractmethod
    def update(self, tenant_id: str, rule_id: str, changes: dict[str, Any]) -> RenewalRule: ...

    @abstractmethod
    def delete(self, tenant_id: str, rule_id: str) -> None: ...


def _to_model(row: RenewalRuleRow) -> RenewalRule:
    return RenewalRule(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        description=row.description,
        is_active=row.is_active,
        contract_types=row.contract_types,
        trigger=row.trigger,
        trigger_days=row.trigger_days,
        renewal_type=row.renewal_type,
        auto_approve=row.auto_approve,
        renewal_period=row.renewal_period,
        price_adjustment=row.price_adjustment,
        conditions=row.conditions,
        notification_settings=row.notification_settings,
        metadata=row.meta,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_columns(values: dict[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for key, value in values.items():
        if key in _JSON_FIELDS:
            value = to_json(value)
        elif key in ("trigger", "renewal_type") and value is not None:
            value = getattr(value, "value", value)
        columns["meta" if key == "metadata" else key] = value
    return columns


class SqlRenewalRuleStore(RenewalRuleStore):
    def __init__(self, session: Session) -> None:
        self._session = session

    def _row(self, tenant_id: str, rule_id: str) -> RenewalRuleRow | None:
        return self._session.scalars(
            select(RenewalRuleRow)
            .where(RenewalRuleRow.tenant_id == tenant_id, RenewalRuleRow.id == rule_id)
            .execution_options(populate_existing=True)
        ).one_or_none()

    def add(self, rule: RenewalRule) -> RenewalRule:
        position = self._session.scalar(
            select(func.coalesce(func.max(RenewalRuleRow.position), 0)).where(
                RenewalRuleRow.tenant_id == rule.tenant_id
            )
        )
        row = RenewalRuleRow(position=position + 1, **_to_columns(rule.model_dump()))
        self._session.add(row)
        self._session.flush()
        return _to_model(row)

    def get(self, tenant_id: str, rule_id: str) -> RenewalRule | None:
        row = self._row(tenant_id, rule_id)
        return _to_model(row) if row is not None else None

    def list(self, tenant_id: str, active_only: bool = False) -> list[RenewalRule]:
        stmt = select(RenewalRuleRow).where(RenewalRuleRow.tenant_id == tenant_id)
        if active_only:
            stmt = stmt.where(RenewalRuleRow.is_active.is_(True))
        stmt = stmt.order_by(RenewalRuleRow.position.asc())
        return [_to_model(row) for row in self._session.scalars(stmt)]

    def update(self, tenant_id: str, rule_id: str, changes: dict[str, Any]) -> RenewalRule:
        row = self._row(tenant_id, rule_id)
        if row is None:
            raise NotFoundError("Renewal rule", rule_id)
        for key, value in _to_columns(changes).items():
            setattr(row, key, value)
        self._session.flush()
        return _to_model(row)

    def delete(self, tenant_id: str, rule_id: str) -> None:
        result = self._session.execute(
            delete(RenewalRuleRow).where(
                RenewalRuleRow.tenant_id == tenant_id, RenewalRuleRow.id == rule_id
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("Renewal rule", rule_id)
