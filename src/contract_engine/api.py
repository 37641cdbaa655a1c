"""FastAPI application for the Contract Engine.

Exposes REST endpoints for:
- Contract creation, updates and listing
- Lifecycle transitions (signature, activation, suspension, termination, ...)
- Contract activity history and expiring-contract queries
- Renewal rule management
- Renewal proposals and the approval workflow
- The batch renewal sweep

Every request is scoped to the tenant named in ``X-Tenant-ID``; the acting
user comes from ``X-Actor-ID``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterator

import structlog
from fastapi import FastAPI, Header, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine

from contract_engine.clock import Clock, SystemClock
from contract_engine.collaborators import (
    LocalSignatureProvider,
    LogNotifier,
    Notifier,
    SignatureProvider,
    WebhookNotifier,
)
from contract_engine.config import Settings
from contract_engine.db.engine import (
    build_engine,
    create_tables,
    make_session_factory,
    session_scope,
)
from contract_engine.errors import (
    ConflictError,
    ContractEngineError,
    ImmutabilityViolationError,
    NotFoundError,
    ValidationError,
)
from contract_engine.models import (
    Contract,
    ContractActivity,
    ContractCreate,
    ContractFilter,
    ContractStatus,
    ContractType,
    ContractUpdate,
    ProposalDecision,
    ProposalFilter,
    RenewalProposal,
    RenewalRule,
    RenewalStatus,
    RuleCreate,
    RuleUpdate,
    SortOrder,
    SweepResult,
)
from contract_engine.wiring import Services, build_services

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str


class ErrorResponse(BaseModel):
    """Body returned for every domain error."""

    error: str
    code: str
    detail: str | None = None
    status_code: int


class ReasonRequest(BaseModel):
    reason: str | None = Field(None, description="Free-text reason recorded on the activity.")


class TerminateRequest(BaseModel):
    reason: str | None = None
    termination_date: datetime | None = Field(
        None, description="Effective termination time; defaults to now."
    )


class SignatureRequest(BaseModel):
    """Signature write-back from the signing service."""

    party_id: str
    signed_at: datetime | None = None


class ProposalCreateRequest(BaseModel):
    contract_id: str
    rule_id: str | None = Field(
        None, description="Rule to apply; the first applicable rule is used if omitted."
    )


_STATUS_CODES: dict[type[ContractEngineError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    ImmutabilityViolationError: 409,
}


# ---------------------------------------------------------------------------
# Application state container
# ---------------------------------------------------------------------------


class AppState:
    """Shared application state accessible from route handlers."""

    def __init__(
        self,
        settings: Settings,
        engine: Engine,
        clock: Clock,
        notifier: Notifier,
        signer: SignatureProvider,
        *,
        owns_notifier: bool = False,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.session_factory = make_session_factory(engine)
        self.clock = clock
        self.notifier = notifier
        self.signer = signer
        self._owns_notifier = owns_notifier

    @contextmanager
    def services(self) -> Iterator[Services]:
        """Services bound to one transaction, committed when the block exits cleanly."""
        with session_scope(self.session_factory) as session:
            yield build_services(
                session,
                self.settings,
                clock=self.clock,
                notifier=self.notifier,
                signer=self.signer,
            )

    def close(self) -> None:
        """Release collaborators the app created for itself."""
        if self._owns_notifier and isinstance(self.notifier, WebhookNotifier):
            self.notifier.close()


def _default_notifier(settings: Settings) -> Notifier:
    if settings.notification_webhook_url:
        return WebhookNotifier(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
    return LogNotifier()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    engine: Engine | None = None,
    clock: Clock | None = None,
    notifier: Notifier | None = None,
    signer: SignatureProvider | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators default to their production implementations; tests pass
    an in-memory engine and a fixed clock.
    """
    settings = settings or Settings()
    if engine is None:
        engine = build_engine(settings.database_url, echo=settings.database_echo)
    create_tables(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        app.state.app_state.close()
        logger.info("application_shutdown", service=settings.service_name)

    app = FastAPI(
        title="Contract Engine",
        description=(
            "Contract lifecycle state machine and rule-driven renewal engine. "
            "Handles guarded contract transitions, renewal rules, renewal "
            "proposals with automatic or human approval, and the batch "
            "renewal sweep."
        ),
        version=settings.service_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Shared state
    state = AppState(
        settings,
        engine,
        clock or SystemClock(),
        notifier or _default_notifier(settings),
        signer or LocalSignatureProvider(),
        owns_notifier=notifier is None,
    )
    app.state.app_state = state
    app.state.settings = settings

    # -------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            service=settings.service_name,
            version=settings.service_version,
        )

    # -------------------------------------------------------------------
    # Contracts
    # -------------------------------------------------------------------

    @app.post("/api/v1/contracts", status_code=201, response_model=Contract, tags=["contracts"])
    def create_contract(
        req: ContractCreate,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> Contract:
        """Create a contract in DRAFT."""
        with state.services() as svc:
            return svc.lifecycle.create_contract(tenant_id, actor, req)

    @app.get("/api/v1/contracts", tags=["contracts"])
    def list_contracts(
        status: ContractStatus | None = None,
        type: ContractType | None = None,
        client_id: str | None = None,
        expiring_within_days: int | None = Query(None, ge=0),
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=500),
        sort_by: str = "created_at",
        sort_order: SortOrder = SortOrder.DESC,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
    ) -> dict[str, Any]:
        query = ContractFilter(
            status=status,
            type=type,
            client_id=client_id,
            expiring_within_days=expiring_within_days,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        with state.services() as svc:
            result = svc.lifecycle.list_contracts(tenant_id, query)
        return {
            "contracts": [c.model_dump(mode="json") for c in result.items],
            "pagination": result.pagination(),
        }

    @app.get("/api/v1/contracts/expiring", response_model=list[Contract], tags=["contracts"])
    def expiring_contracts(
        days: int = Query(30, ge=0),
        status: ContractStatus | None = None,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
    ) -> list[Contract]:
        """Contracts whose end date falls within the next ``days`` days."""
        with state.services() as svc:
            return svc.lifecycle.get_expiring_contracts(tenant_id, days, status)

    @app.post("/api/v1/contracts/expire-overdue", tags=["contracts"])
    def expire_overdue(
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> dict[str, Any]:
        with state.services() as svc:
            expired = svc.lifecycle.expire_overdue_contracts(tenant_id, actor)
        return {"expired": [c.id for c in expired], "count": len(expired)}

    @app.get("/api/v1/contracts/{contract_id}", response_model=Contract, tags=["contracts"])
    def get_contract(
        contract_id: str,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
    ) -> Contract:
        with state.services() as svc:
            return svc.lifecycle.get_contract(tenant_id, contract_id)

    @app.patch("/api/v1/contracts/{contract_id}", response_model=Contract, tags=["contracts"])
    def update_contract(
        contract_id: str,
        req: ContractUpdate,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> Contract:
        """Apply a partial update; only fields present in the body change."""
        with state.services() as svc:
            return svc.lifecycle.update_contract(tenant_id, contract_id, actor, req)

    @app.get(
        "/api/v1/contracts/{contract_id}/activity",
        response_model=list[ContractActivity],
        tags=["contracts"],
    )
    def contract_activity(
        contract_id: str,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
    ) -> list[ContractActivity]:
        with state.services() as svc:
            return svc.lifecycle.get_activity(tenant_id, contract_id)

    # -------------------------------------------------------------------
    # Lifecycle transitions
    # -------------------------------------------------------------------

    @app.post(
        "/api/v1/contracts/{contract_id}/send-for-signature",
        response_model=Contract,
        tags=["lifecycle"],
    )
    def send_for_signature(
        contract_id: str,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> Contract:
        with state.services() as svc:
            return svc.lifecycle.send_for_signature(tenant_id, contract_id, actor)

    @app.post(
        "/api/v1/contracts/{contract_id}/signatures",
        response_model=Contract,
        tags=["lifecycle"],
    )
    def record_signature(
        contract_id: str,
        req: SignatureRequest,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> Contract:
        with state.services() as svc:
            return svc.lifecycle.record_signature(
                tenant_id, contract_id, req.party_id, actor, signed_at=req.signed_at
            )

    @app.post(
        "/api/v1/contracts/{contract_id}/activate", response_model=Contract, tags=["lifecycle"]
    )
    def activate_contract(
        contract_id: str,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> Contract:
        with state.services() as svc:
            return svc.lifecycle.activate_contract(tenant_id, contract_id, actor)

    @app.post(
        "/api/v1/contracts/{contract_id}/suspend", response_model=Contract, tags=["lifecycle"]
    )
    def suspend_contract(
        contract_id: str,
        req: ReasonRequest | None = None,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> Contract:
        with state.services() as svc:
            return svc.lifecycle.suspend_contract(
                tenant_id, contract_id, actor, reason=req.reason if req else None
            )

    @app.post(
        "/api/v1/contracts/{contract_id}/reactivate", response_model=Contract, tags=["lifecycle"]
    )
    def reactivate_contract(
        contract_id: str,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> Contract:
        with state.services() as svc:
            return svc.lifecycle.reactivate_contract(tenant_id, contract_id, actor)

    @app.post(
        "/api/v1/contracts/{contract_id}/terminate", response_model=Contract, tags=["lifecycle"]
    )
    def terminate_contract(
        contract_id: str,
        req: TerminateRequest | None = None,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> Contract:
        req = req or TerminateRequest()
        with state.services() as svc:
            return svc.lifecycle.terminate_contract(
                tenant_id,
                contract_id,
                actor,
                reason=req.reason,
                termination_date=req.termination_date,
            )

    @app.post(
        "/api/v1/contracts/{contract_id}/cancel", response_model=Contract, tags=["lifecycle"]
    )
    def cancel_contract(
        contract_id: str,
        req: ReasonRequest | None = None,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> Contract:
        with state.services() as svc:
            return svc.lifecycle.cancel_contract(
                tenant_id, contract_id, actor, reason=req.reason if req else None
            )

    @app.post(
        "/api/v1/contracts/{contract_id}/expire", response_model=Contract, tags=["lifecycle"]
    )
    def expire_contract(
        contract_id: str,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> Contract:
        with state.services() as svc:
            return svc.lifecycle.expire_contract(tenant_id, contract_id, actor)

    # -------------------------------------------------------------------
    # Renewal rules
    # -------------------------------------------------------------------

    @app.post(
        "/api/v1/renewal-rules", status_code=201, response_model=RenewalRule, tags=["renewal-rules"]
    )
    def create_rule(
        req: RuleCreate,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> RenewalRule:
        with state.services() as svc:
            return svc.rules.create_rule(tenant_id, actor, req)

    @app.get("/api/v1/renewal-rules", response_model=list[RenewalRule], tags=["renewal-rules"])
    def list_rules(
        active_only: bool = False,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
    ) -> list[RenewalRule]:
        with state.services() as svc:
            return svc.rules.list_rules(tenant_id, active_only=active_only)

    @app.post(
        "/api/v1/renewal-rules/seed-defaults",
        response_model=list[RenewalRule],
        tags=["renewal-rules"],
    )
    def seed_default_rules(
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> list[RenewalRule]:
        """Install the stock renewal rules the tenant does not have yet."""
        with state.services() as svc:
            return svc.rules.seed_default_rules(tenant_id, actor)

    @app.get(
        "/api/v1/renewal-rules/{rule_id}", response_model=RenewalRule, tags=["renewal-rules"]
    )
    def get_rule(
        rule_id: str,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
    ) -> RenewalRule:
        with state.services() as svc:
            return svc.rules.get_rule(tenant_id, rule_id)

    @app.patch(
        "/api/v1/renewal-rules/{rule_id}", response_model=RenewalRule, tags=["renewal-rules"]
    )
    def update_rule(
        rule_id: str,
        req: RuleUpdate,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
    ) -> RenewalRule:
        with state.services() as svc:
            return svc.rules.update_rule(tenant_id, rule_id, req)

    @app.delete("/api/v1/renewal-rules/{rule_id}", status_code=204, tags=["renewal-rules"])
    def delete_rule(
        rule_id: str,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
    ) -> Response:
        with state.services() as svc:
            svc.rules.delete_rule(tenant_id, rule_id)
        return Response(status_code=204)

    # -------------------------------------------------------------------
    # Renewal proposals
    # -------------------------------------------------------------------

    @app.post(
        "/api/v1/renewal-proposals",
        status_code=201,
        response_model=RenewalProposal,
        tags=["renewal-proposals"],
    )
    def create_proposal(
        req: ProposalCreateRequest,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> RenewalProposal:
        """Propose a renewal; auto-approving rules execute it immediately."""
        with state.services() as svc:
            return svc.proposals.create_renewal_proposal(
                tenant_id, req.contract_id, actor, rule_id=req.rule_id
            )

    @app.get("/api/v1/renewal-proposals", tags=["renewal-proposals"])
    def list_proposals(
        status: RenewalStatus | None = None,
        contract_id: str | None = None,
        rule_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=500),
        sort_by: str = "created_at",
        sort_order: SortOrder = SortOrder.DESC,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
    ) -> dict[str, Any]:
        query = ProposalFilter(
            status=status,
            contract_id=contract_id,
            rule_id=rule_id,
            date_from=date_from,
            date_to=date_to,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        with state.services() as svc:
            result = svc.proposals.list_proposals(tenant_id, query)
        return {
            "proposals": [p.model_dump(mode="json") for p in result.items],
            "pagination": result.pagination(),
        }

    @app.get(
        "/api/v1/renewal-proposals/{proposal_id}",
        response_model=RenewalProposal,
        tags=["renewal-proposals"],
    )
    def get_proposal(
        proposal_id: str,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
    ) -> RenewalProposal:
        with state.services() as svc:
            return svc.proposals.get_proposal(tenant_id, proposal_id)

    @app.post(
        "/api/v1/renewal-proposals/{proposal_id}/process",
        response_model=RenewalProposal,
        tags=["renewal-proposals"],
    )
    def process_proposal(
        proposal_id: str,
        req: ProposalDecision,
        tenant_id: str = Header(..., alias="X-Tenant-ID"),
        actor: str = Header("anonymous", alias="X-Actor-ID"),
    ) -> RenewalProposal:
        """Approve (and execute) or decline a pending proposal."""
        with state.services() as svc:
            return svc.proposals.process_renewal_proposal(tenant_id, proposal_id, actor, req)

    @app.post("/api/v1/renewals/sweep", response_model=SweepResult, tags=["renewal-proposals"])
    def run_sweep(tenant_id: str = Header(..., alias="X-Tenant-ID")) -> SweepResult:
        """Create proposals for every contract inside an active rule's trigger window."""
        with state.services() as svc:
            return svc.sweep.check_and_create_renewals(tenant_id)

    # -------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------

    @app.exception_handler(ContractEngineError)
    async def domain_exception_handler(
        request: Request, exc: ContractEngineError
    ) -> JSONResponse:
        status_code = next(
            (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 400
        )
        logger.info(
            "request_rejected",
            path=request.url.path,
            code=exc.code,
            error=exc.message,
        )
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                error=exc.message,
                code=exc.code,
                detail=getattr(exc, "entity_id", None),
                status_code=status_code,
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all error handler."""
        logger.error(
            "unhandled_exception", error=str(exc), path=request.url.path
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal server error",
                code="INTERNAL_ERROR",
                detail=str(exc),
                status_code=500,
            ).model_dump(),
        )

    return app
