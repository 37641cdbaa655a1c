"""Renewal proposal repository.

Proposal creation is the one place where check-then-insert races matter:
two callers may both observe "no pending proposal" and both insert. The
partial unique index on pending proposals (and the unique ``sweep_key``
for sweep-generated proposals) turns the loser's insert into a
:class:`ConflictError` instead of a duplicate row.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import structlog
from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from contract_engine.db.tables import ProposalRow
from contract_engine.errors import ConflictError, NotFoundError
from contract_engine.models import (
    Page,
    ProposalFilter,
    RenewalProposal,
    RenewalStatus,
    SortOrder,
)
from contract_engine.store.base import order_column, to_json

logger = structlog.get_logger(__name__)

_SORTABLE = frozenset(
    {"created_at", "updated_at", "current_contract_end_date", "proposed_end_date", "status"}
)


class ProposalRepository(ABC):
    @abstractmethod
    def create(self, proposal: RenewalProposal, sweep_key: str | None = None) -> RenewalProposal:
        """Insert atomically; raises ConflictError on a uniqueness violation."""

    @abstractmethod
    def get(self, tenant_id: str, proposal_id: str) -> RenewalProposal | None: ...

    @abstractmethod
    def list(self, tenant_id: str, query: ProposalFilter) -> Page[RenewalProposal]: ...

    @abstractmethod
    def has_pending(self, tenant_id: str, contract_id: str) -> bool: ...

    @abstractmethod
    def exists_for_contract(self, tenant_id: str, contract_id: str) -> bool: ...

    @abstractmethod
    def has_pending_for_rule(self, tenant_id: str, rule_id: str) -> bool: ...

    @abstractmethod
    def compare_and_set(
        self,
        tenant_id: str,
        proposal_id: str,
        changes: dict[str, Any],
        *,
        expected_status: RenewalStatus | None = None,
    ) -> RenewalProposal: ...


def _to_model(row: ProposalRow) -> RenewalProposal:
    return RenewalProposal(
        id=row.id,
        tenant_id=row.tenant_id,
        contract_id=row.contract_id,
        rule_id=row.rule_id,
        current_contract_end_date=row.current_contract_end_date,
        proposed_start_date=row.proposed_start_date,
        proposed_end_date=row.proposed_end_date,
        renewal_period=row.renewal_period,
        current_value=row.current_value,
        proposed_value=row.proposed_value,
        price_adjustment=row.price_adjustment,
        status=row.status,
        renewal_type=row.renewal_type,
        notes=row.notes,
        approved_by=row.approved_by,
        approved_at=row.approved_at,
        declined_by=row.declined_by,
        declined_at=row.declined_at,
        decline_reason=row.decline_reason,
        processed_at=row.processed_at,
        successor_contract_id=row.successor_contract_id,
        metadata=row.meta,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_columns(values: dict[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for key, value in values.items():
        if key in ("price_adjustment", "metadata"):
            value = to_json(value)
        elif key in ("status", "renewal_type") and value is not None:
            value = getattr(value, "value", value)
        columns["meta" if key == "metadata" else key] = value
    return columns


class SqlProposalRepository(ProposalRepository):
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, proposal: RenewalProposal, sweep_key: str | None = None) -> RenewalProposal:
        row = ProposalRow(sweep_key=sweep_key, **_to_columns(proposal.model_dump()))
        try:
            with self._session.begin_nested():
                self._session.add(row)
                self._session.flush()
        except IntegrityError as exc:
            logger.warning(
                "proposal_insert_conflict",
                tenant_id=proposal.tenant_id,
                contract_id=proposal.contract_id,
                sweep_key=sweep_key,
                error=str(exc.orig),
            )
            raise ConflictError(
                "A renewal proposal for this contract was created concurrently"
            ) from exc
        return _to_model(row)

    def get(self, tenant_id: str, proposal_id: str) -> RenewalProposal | None:
        row = self._session.scalars(
            select(ProposalRow)
            .where(ProposalRow.tenant_id == tenant_id, ProposalRow.id == proposal_id)
            .execution_options(populate_existing=True)
        ).one_or_none()
        return _to_model(row) if row is not None else None

    def list(self, tenant_id: str, query: ProposalFilter) -> Page[RenewalProposal]:
        column = order_column(ProposalRow, query.sort_by, _SORTABLE)
        ordering = column.asc() if query.sort_order == SortOrder.ASC else column.desc()

        conditions = [ProposalRow.tenant_id == tenant_id]
        if query.status is not None:
            conditions.append(ProposalRow.status == query.status.value)
        if query.contract_id is not None:
            conditions.append(ProposalRow.contract_id == query.contract_id)
        if query.rule_id is not None:
            conditions.append(ProposalRow.rule_id == query.rule_id)
        if query.date_from is not None:
            conditions.append(ProposalRow.created_at >= query.date_from)
        if query.date_to is not None:
            conditions.append(ProposalRow.created_at <= query.date_to)

        rows = list(
            self._session.scalars(
                select(ProposalRow)
                .where(*conditions)
                .order_by(ordering, ProposalRow.id)
                .execution_options(populate_existing=True)
            )
        )
        offset = (query.page - 1) * query.limit
        return Page[RenewalProposal](
            items=[_to_model(row) for row in rows[offset:offset + query.limit]],
            page=query.page,
            limit=query.limit,
            total=len(rows),
        )

    def _exists(self, *conditions) -> bool:
        return bool(self._session.scalar(select(exists().where(*conditions))))

    def has_pending(self, tenant_id: str, contract_id: str) -> bool:
        return self._exists(
            ProposalRow.tenant_id == tenant_id,
            ProposalRow.contract_id == contract_id,
            ProposalRow.status == RenewalStatus.PENDING.value,
        )

    def exists_for_contract(self, tenant_id: str, contract_id: str) -> bool:
        return self._exists(
            ProposalRow.tenant_id == tenant_id,
            ProposalRow.contract_id == contract_id,
        )

    def has_pending_for_rule(self, tenant_id: str, rule_id: str) -> bool:
        return self._exists(
            ProposalRow.tenant_id == tenant_id,
            ProposalRow.rule_id == rule_id,
            ProposalRow.status == RenewalStatus.PENDING.value,
        )

    def compare_and_set(
        self,
        tenant_id: str,
        proposal_id: str,
        changes: dict[str, Any],
        *,
        expected_status: RenewalStatus | None = None,
    ) -> RenewalProposal:
        stmt = update(ProposalRow).where(
            ProposalRow.tenant_id == tenant_id,
            ProposalRow.id == proposal_id,
        )
        if expected_status is not None:
            stmt = stmt.where(ProposalRow.status == expected_status.value)

        values = _to_columns(changes)
        values["version"] = ProposalRow.version + 1
        result = self._session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if self.get(tenant_id, proposal_id) is None:
                raise NotFoundError("Renewal proposal", proposal_id)
            raise ConflictError(
                "Renewal proposal was processed concurrently; re-read and retry"
            )

        updated = self.get(tenant_id, proposal_id)
        if updated is None:
            raise NotFoundError("Renewal proposal", proposal_id)
        return updated
