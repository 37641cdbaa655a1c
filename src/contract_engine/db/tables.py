"""ORM tables for contracts, activity, renewal rules and proposals.

Invariants enforced at the storage level:
    - At most one PENDING proposal per contract: partial unique index on
      ``(tenant_id, contract_id) WHERE status = 'PENDING'``.
    - Sweep idempotence: proposals created by the renewal sweep carry a
      unique ``sweep_key`` so two overlapping sweeps cannot both insert.
    - Activity rows are append-only: ORM updates and deletes raise
      :class:`~contract_engine.errors.ImmutabilityViolationError`.
    - Contracts and proposals carry a ``version`` counter used for
      compare-and-set updates by the repositories.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    Index,
    Integer,
    String,
    Text,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from contract_engine.db.base import Base
from contract_engine.errors import ImmutabilityViolationError

logger = structlog.get_logger(__name__)

_PENDING_ONLY = text("status = 'PENDING'")


class ContractRow(Base):
    __tablename__ = "contracts"

    __table_args__ = (
        Index("ix_contracts_tenant_status", "tenant_id", "status"),
        Index("ix_contracts_tenant_end_date", "tenant_id", "end_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    parties: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    terms: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    auto_renewal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    renewal_period: Mapped[int | None] = mapped_column(Integer, nullable=True)
    renewal_status: Mapped[str] = mapped_column(String(32), nullable=False)
    value: Mapped[Decimal | None] = mapped_column(nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False)
    template_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    quotation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    opportunity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    signature_workflow_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    terminated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class ActivityRow(Base):
    __tablename__ = "contract_activity"

    __table_args__ = (
        Index("ix_contract_activity_contract", "tenant_id", "contract_id", "performed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    contract_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    performed_by: Mapped[str] = mapped_column(String(128), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(nullable=False)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False)


class RenewalRuleRow(Base):
    __tablename__ = "renewal_rules"

    __table_args__ = (
        Index("ix_renewal_rules_tenant_position", "tenant_id", "position"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # Insertion order; rule matching is first-match-wins in this order.
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    contract_types: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    trigger: Mapped[str] = mapped_column(String(32), nullable=False)
    trigger_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    renewal_type: Mapped[str] = mapped_column(String(32), nullable=False)
    auto_approve: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    renewal_period: Mapped[int] = mapped_column(Integer, nullable=False)
    price_adjustment: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    conditions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    notification_settings: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)


class ProposalRow(Base):
    __tablename__ = "renewal_proposals"

    __table_args__ = (
        Index(
            "uq_renewal_proposals_one_pending",
            "tenant_id",
            "contract_id",
            unique=True,
            sqlite_where=_PENDING_ONLY,
            postgresql_where=_PENDING_ONLY,
        ),
        Index("ix_renewal_proposals_contract", "tenant_id", "contract_id", "created_at"),
        Index("ix_renewal_proposals_rule_status", "tenant_id", "rule_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    contract_id: Mapped[str] = mapped_column(String(36), nullable=False)
    rule_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    sweep_key: Mapped[str | None] = mapped_column(String(160), nullable=True, unique=True)
    current_contract_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    proposed_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    proposed_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    renewal_period: Mapped[int] = mapped_column(Integer, nullable=False)
    current_value: Mapped[Decimal | None] = mapped_column(nullable=True)
    proposed_value: Mapped[Decimal | None] = mapped_column(nullable=True)
    price_adjustment: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    renewal_type: Mapped[str] = mapped_column(String(32), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    declined_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    successor_contract_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


# ---------------------------------------------------------------------------
# Append-only activity log
# ---------------------------------------------------------------------------


@event.listens_for(ActivityRow, "before_update")
def _block_activity_update(mapper, connection, target):
    logger.error("immutability_violation_blocked", entity="ContractActivity", id=target.id)
    raise ImmutabilityViolationError(
        "ContractActivity", str(target.id), "activity records cannot be modified"
    )


@event.listens_for(ActivityRow, "before_delete")
def _block_activity_delete(mapper, connection, target):
    logger.error("immutability_violation_blocked", entity="ContractActivity", id=target.id)
    raise ImmutabilityViolationError(
        "ContractActivity", str(target.id), "activity records cannot be deleted"
    )
