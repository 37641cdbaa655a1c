"""Pydantic models for the Contract Engine.

Defines the domain objects shared by the lifecycle service, the renewal
engine, the repositories and the API: contract types and statuses,
parties and terms, activity records, renewal rules, renewal proposals,
command payloads and list filters.
"""

from __future__ import annotations

import math
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ContractType(str, Enum):
    """Supported contract categories."""

    MEMBERSHIP = "MEMBERSHIP"
    SERVICE = "SERVICE"
    EVENT_SPACE = "EVENT_SPACE"
    MEETING_ROOM = "MEETING_ROOM"
    CUSTOM = "CUSTOM"


class ContractStatus(str, Enum):
    """States of the contract lifecycle state machine."""

    DRAFT = "DRAFT"
    PENDING_SIGNATURE = "PENDING_SIGNATURE"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    EXPIRED = "EXPIRED"
    TERMINATED = "TERMINATED"
    CANCELLED = "CANCELLED"


class RenewalStatus(str, Enum):
    """Outcome of the most recent renewal proposal (also a proposal's status)."""

    NONE = "NONE"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    AUTO_RENEWED = "AUTO_RENEWED"


class PartyRole(str, Enum):
    CLIENT = "CLIENT"
    COMPANY = "COMPANY"


class ActivityType(str, Enum):
    """Kinds of entries in the contract activity log."""

    CONTRACT_CREATED = "CONTRACT_CREATED"
    CONTRACT_UPDATED = "CONTRACT_UPDATED"
    SIGNATURE_REQUESTED = "SIGNATURE_REQUESTED"
    CONTRACT_SIGNED = "CONTRACT_SIGNED"
    CONTRACT_ACTIVATED = "CONTRACT_ACTIVATED"
    CONTRACT_SUSPENDED = "CONTRACT_SUSPENDED"
    CONTRACT_REACTIVATED = "CONTRACT_REACTIVATED"
    CONTRACT_TERMINATED = "CONTRACT_TERMINATED"
    CONTRACT_CANCELLED = "CONTRACT_CANCELLED"
    CONTRACT_EXPIRED = "CONTRACT_EXPIRED"
    RENEWAL_PROPOSED = "RENEWAL_PROPOSED"
    RENEWAL_AUTO_APPROVED = "RENEWAL_AUTO_APPROVED"
    RENEWAL_APPROVED = "RENEWAL_APPROVED"
    RENEWAL_DECLINED = "RENEWAL_DECLINED"


class RenewalTrigger(str, Enum):
    DAYS_BEFORE_EXPIRY = "DAYS_BEFORE_EXPIRY"
    MANUAL = "MANUAL"
    AUTO_ON_EXPIRY = "AUTO_ON_EXPIRY"


class RenewalType(str, Enum):
    """Renewal execution strategies."""

    EXTEND_CURRENT = "EXTEND_CURRENT"
    NEW_CONTRACT = "NEW_CONTRACT"
    RENEGOTIATE = "RENEGOTIATE"


class AdjustmentKind(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class NotificationChannel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    IN_APP = "IN_APP"
    WEBHOOK = "WEBHOOK"


class ProposalAction(str, Enum):
    APPROVE = "APPROVE"
    DECLINE = "DECLINE"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


class ContractParty(BaseModel):
    """A signatory of a contract."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    name: str
    email: str
    role: PartyRole
    signed_at: datetime | None = None
    user_id: str | None = None
    client_id: str | None = None


class ContractTerm(BaseModel):
    """A single numbered term of a contract."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    title: str
    content: str = ""
    order: int = 0
    is_required: bool = True


class Contract(BaseModel):
    """A tenant's agreement record moving through the lifecycle."""

    id: str = Field(default_factory=new_id)
    tenant_id: str
    type: ContractType
    title: str
    content: str = ""
    status: ContractStatus = ContractStatus.DRAFT
    parties: list[ContractParty] = Field(default_factory=list)
    terms: list[ContractTerm] = Field(default_factory=list)
    start_date: date
    end_date: date | None = None
    auto_renewal: bool = False
    renewal_period: int | None = None
    renewal_status: RenewalStatus = RenewalStatus.NONE
    value: Decimal | None = None
    currency: str = "USD"
    metadata: dict[str, Any] = Field(default_factory=dict)
    template_id: str | None = None
    quotation_id: str | None = None
    opportunity_id: str | None = None
    signature_workflow_id: str | None = None
    activated_at: datetime | None = None
    terminated_at: datetime | None = None
    created_by: str
    created_at: datetime
    updated_at: datetime
    version: int = 1

    def client_party(self) -> ContractParty | None:
        return next((p for p in self.parties if p.role == PartyRole.CLIENT), None)


class ContractActivity(BaseModel):
    """Immutable audit record appended on every contract mutation."""

    id: int | None = None
    tenant_id: str
    contract_id: str
    type: ActivityType
    description: str
    performed_by: str
    performed_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class ContractCreate(BaseModel):
    """Payload for creating a contract (always lands in DRAFT)."""

    type: ContractType
    title: str = Field(..., min_length=1)
    content: str = ""
    parties: list[ContractParty]
    terms: list[ContractTerm] = Field(default_factory=list)
    start_date: date
    end_date: date | None = None
    auto_renewal: bool = False
    renewal_period: int | None = Field(default=None, ge=1)
    value: Decimal | None = None
    currency: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    template_id: str | None = None
    quotation_id: str | None = None
    opportunity_id: str | None = None


class ContractUpdate(BaseModel):
    """Partial update; only explicitly set fields are applied."""

    title: str | None = None
    content: str | None = None
    parties: list[ContractParty] | None = None
    terms: list[ContractTerm] | None = None
    start_date: date | None = None
    end_date: date | None = None
    auto_renewal: bool | None = None
    renewal_period: int | None = Field(default=None, ge=1)
    value: Decimal | None = None
    currency: str | None = None
    metadata: dict[str, Any] | None = None


class ContractFilter(BaseModel):
    status: ContractStatus | None = None
    type: ContractType | None = None
    client_id: str | None = None
    expiring_within_days: int | None = Field(default=None, ge=0)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=500)
    sort_by: str = "created_at"
    sort_order: SortOrder = SortOrder.DESC


# ---------------------------------------------------------------------------
# Renewal rules
# ---------------------------------------------------------------------------


class PriceAdjustment(BaseModel):
    kind: AdjustmentKind
    value: Decimal


class AppliedAdjustment(BaseModel):
    """Price adjustment as recorded on a proposal, with its explanation."""

    kind: AdjustmentKind
    value: Decimal
    reason: str


class EligibilityConditions(BaseModel):
    min_contract_value: Decimal | None = None
    max_contract_value: Decimal | None = None
    exclude_client_ids: list[str] = Field(default_factory=list)


class NotificationSettings(BaseModel):
    enabled: bool = False
    channels: list[NotificationChannel] = Field(default_factory=list)
    recipients: list[str] = Field(default_factory=list)
    template: str | None = None


class RenewalRule(BaseModel):
    """Tenant policy describing which contracts to renew, when, and how."""

    id: str = Field(default_factory=new_id)
    tenant_id: str
    name: str
    description: str | None = None
    is_active: bool = True
    contract_types: list[ContractType]
    trigger: RenewalTrigger
    trigger_days: int | None = None
    renewal_type: RenewalType
    auto_approve: bool = False
    renewal_period: int
    price_adjustment: PriceAdjustment | None = None
    conditions: EligibilityConditions | None = None
    notification_settings: NotificationSettings = Field(
        default_factory=NotificationSettings
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_by: str
    created_at: datetime
    updated_at: datetime


class RuleCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str | None = None
    is_active: bool = True
    contract_types: list[ContractType]
    trigger: RenewalTrigger
    trigger_days: int | None = None
    renewal_type: RenewalType
    auto_approve: bool = False
    renewal_period: int
    price_adjustment: PriceAdjustment | None = None
    conditions: EligibilityConditions | None = None
    notification_settings: NotificationSettings = Field(
        default_factory=NotificationSettings
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class RuleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    is_active: bool | None = None
    contract_types: list[ContractType] | None = None
    trigger: RenewalTrigger | None = None
    trigger_days: int | None = None
    renewal_type: RenewalType | None = None
    auto_approve: bool | None = None
    renewal_period: int | None = None
    price_adjustment: PriceAdjustment | None = None
    conditions: EligibilityConditions | None = None
    notification_settings: NotificationSettings | None = None
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Renewal proposals
# ---------------------------------------------------------------------------


class RenewalProposal(BaseModel):
    """One renewal decision for one contract."""

    id: str = Field(default_factory=new_id)
    tenant_id: str
    contract_id: str
    rule_id: str | None = None
    current_contract_end_date: date
    proposed_start_date: date
    proposed_end_date: date
    renewal_period: int
    current_value: Decimal | None = None
    proposed_value: Decimal | None = None
    price_adjustment: AppliedAdjustment | None = None
    status: RenewalStatus = RenewalStatus.PENDING
    renewal_type: RenewalType = RenewalType.EXTEND_CURRENT
    notes: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    declined_by: str | None = None
    declined_at: datetime | None = None
    decline_reason: str | None = None
    processed_at: datetime | None = None
    successor_contract_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_by: str
    created_at: datetime
    updated_at: datetime


class ProposalDecision(BaseModel):
    """Human decision on a PENDING proposal."""

    action: ProposalAction
    notes: str | None = None
    decline_reason: str | None = None
    modify_terms: bool = False
    new_value: Decimal | None = None
    new_end_date: date | None = None


class ProposalFilter(BaseModel):
    status: RenewalStatus | None = None
    contract_id: str | None = None
    rule_id: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=500)
    sort_by: str = "created_at"
    sort_order: SortOrder = SortOrder.DESC


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class SweepFailure(BaseModel):
    contract_id: str
    rule_id: str
    error: str


class SweepResult(BaseModel):
    """Aggregate outcome of one renewal sweep run."""

    created: int = 0
    processed: int = 0
    notifications: int = 0
    skipped: int = 0
    failures: list[SweepFailure] = Field(default_factory=list)


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """One page of a filtered listing."""

    items: list[T]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict[str, int]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "pages": self.pages,
        }
