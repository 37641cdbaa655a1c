"""Contract repository: tenant-scoped storage with compare-and-set updates."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from contract_engine.db.tables import ContractRow
from contract_engine.errors import ConflictError, NotFoundError
from contract_engine.models import (
    Contract,
    ContractFilter,
    ContractStatus,
    Page,
    SortOrder,
)
from contract_engine.store.base import order_column, to_json

logger = structlog.get_logger(__name__)

_SORTABLE = frozenset({"created_at", "updated_at", "start_date", "end_date", "title"})


class ContractRepository(ABC):
    """Storage contract for :class:`Contract` aggregates."""

    @abstractmethod
    def add(self, contract: Contract) -> Contract: ...

    @abstractmethod
    def get(self, tenant_id: str, contract_id: str) -> Contract | None: ...

    @abstractmethod
    def list(self, tenant_id: str, query: ContractFilter, today: date) -> Page[Contract]: ...

    @abstractmethod
    def list_expiring(
        self,
        tenant_id: str,
        today: date,
        within_days: int,
        status: ContractStatus | None = None,
    ) -> list[Contract]: ...

    @abstractmethod
    def list_ended_before(
        self, tenant_id: str, day: date, status: ContractStatus
    ) -> list[Contract]: ...

    @abstractmethod
    def compare_and_set(
        self,
        tenant_id: str,
        contract_id: str,
        changes: dict[str, Any],
        *,
        expected_status: ContractStatus | None = None,
        expected_version: int | None = None,
    ) -> Contract:
        """Apply *changes* only if the stored row still matches the expectation.

        Raises:
            NotFoundError: the contract does not exist for the tenant.
            ConflictError: the row exists but its status/version moved on.
        """


def _to_model(row: ContractRow) -> Contract:
    return Contract(
        id=row.id,
        tenant_id=row.tenant_id,
        type=row.type,
        title=row.title,
        content=row.content,
        status=row.status,
        parties=row.parties,
        terms=row.terms,
        start_date=row.start_date,
        end_date=row.end_date,
        auto_renewal=row.auto_renewal,
        renewal_period=row.renewal_period,
        renewal_status=row.renewal_status,
        value=row.value,
        currency=row.currency,
        metadata=row.meta,
        template_id=row.template_id,
        quotation_id=row.quotation_id,
        opportunity_id=row.opportunity_id,
        signature_workflow_id=row.signature_workflow_id,
        activated_at=row.activated_at,
        terminated_at=row.terminated_at,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


def _to_columns(values: dict[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for key, value in values.items():
        if key in ("parties", "terms", "metadata"):
            value = to_json(value)
        elif key in ("type", "status", "renewal_status") and value is not None:
            value = getattr(value, "value", value)
        columns["meta" if key == "metadata" else key] = value
    return columns


class SqlContractRepository(ContractRepository):
    def __init__(self, session: Session) -> None:
        self._session = session

    def add(self, contract: Contract) -> Contract:
        row = ContractRow(**_to_columns(contract.model_dump()))
        self._session.add(row)
        self._session.flush()
        return _to_model(row)

    def get(self, tenant_id: str, contract_id: str) -> Contract | None:
        row = self._session.scalars(
            select(ContractRow)
            .where(ContractRow.tenant_id == tenant_id, ContractRow.id == contract_id)
            .execution_options(populate_existing=True)
        ).one_or_none()
        return _to_model(row) if row is not None else None

    def list(self, tenant_id: str, query: ContractFilter, today: date) -> Page[Contract]:
        column = order_column(ContractRow, query.sort_by, _SORTABLE)
        ordering = column.asc() if query.sort_order == SortOrder.ASC else column.desc()

        stmt = select(ContractRow).where(ContractRow.tenant_id == tenant_id)
        if query.status is not None:
            stmt = stmt.where(ContractRow.status == query.status.value)
        if query.type is not None:
            stmt = stmt.where(ContractRow.type == query.type.value)
        if query.expiring_within_days is not None:
            horizon = today + timedelta(days=query.expiring_within_days)
            stmt = stmt.where(ContractRow.end_date > today, ContractRow.end_date <= horizon)
        stmt = stmt.order_by(ordering, ContractRow.id).execution_options(populate_existing=True)

        contracts = [_to_model(row) for row in self._session.scalars(stmt)]
        # Parties live in a JSON column, so the client filter runs here.
        if query.client_id is not None:
            contracts = [
                c for c in contracts
                if any(p.client_id == query.client_id for p in c.parties)
            ]

        offset = (query.page - 1) * query.limit
        return Page[Contract](
            items=contracts[offset:offset + query.limit],
            page=query.page,
            limit=query.limit,
            total=len(contracts),
        )

    def list_expiring(
        self,
        tenant_id: str,
        today: date,
        within_days: int,
        status: ContractStatus | None = None,
    ) -> list[Contract]:
        horizon = today + timedelta(days=within_days)
        stmt = select(ContractRow).where(
            ContractRow.tenant_id == tenant_id,
            ContractRow.end_date.is_not(None),
            ContractRow.end_date > today,
            ContractRow.end_date <= horizon,
        )
        if status is not None:
            stmt = stmt.where(ContractRow.status == status.value)
        stmt = stmt.order_by(ContractRow.end_date.asc(), ContractRow.id)
        return [
            _to_model(row)
            for row in self._session.scalars(stmt.execution_options(populate_existing=True))
        ]

    def list_ended_before(
        self, tenant_id: str, day: date, status: ContractStatus
    ) -> list[Contract]:
        stmt = (
            select(ContractRow)
            .where(
                ContractRow.tenant_id == tenant_id,
                ContractRow.status == status.value,
                ContractRow.end_date.is_not(None),
                ContractRow.end_date < day,
            )
            .order_by(ContractRow.end_date.asc(), ContractRow.id)
            .execution_options(populate_existing=True)
        )
        return [_to_model(row) for row in self._session.scalars(stmt)]

    def compare_and_set(
        self,
        tenant_id: str,
        contract_id: str,
        changes: dict[str, Any],
        *,
        expected_status: ContractStatus | None = None,
        expected_version: int | None = None,
    ) -> Contract:
        stmt = update(ContractRow).where(
            ContractRow.tenant_id == tenant_id,
            ContractRow.id == contract_id,
        )
        if expected_status is not None:
            stmt = stmt.where(ContractRow.status == expected_status.value)
        if expected_version is not None:
            stmt = stmt.where(ContractRow.version == expected_version)

        values = _to_columns(changes)
        values["version"] = ContractRow.version + 1
        result = self._session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            current = self.get(tenant_id, contract_id)
            if current is None:
                raise NotFoundError("Contract", contract_id)
            logger.warning(
                "contract_update_conflict",
                tenant_id=tenant_id,
                contract_id=contract_id,
                expected_status=expected_status.value if expected_status else None,
                expected_version=expected_version,
                actual_status=current.status.value,
                actual_version=current.version,
            )
            raise ConflictError(
                "Contract was modified concurrently; re-read and retry"
            )

        updated = self.get(tenant_id, contract_id)
        if updated is None:
            raise NotFoundError("Contract", contract_id)
        return updated
