"""Assembles the services for one database session."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from contract_engine.clock import Clock
from contract_engine.collaborators import Notifier, SignatureProvider
from contract_engine.config import Settings
from contract_engine.lifecycle import ContractLifecycleService
from contract_engine.renewal import (
    RenewalExecutor,
    RenewalProposalService,
    RenewalRuleService,
    RenewalSweep,
)
from contract_engine.store import (
    SqlActivityLog,
    SqlContractRepository,
    SqlProposalRepository,
    SqlRenewalRuleStore,
    SqlUnitOfWork,
)


@dataclass
class Services:
    lifecycle: ContractLifecycleService
    rules: RenewalRuleService
    proposals: RenewalProposalService
    sweep: RenewalSweep


def build_services(
    session: Session,
    settings: Settings,
    *,
    clock: Clock,
    notifier: Notifier,
    signer: SignatureProvider,
) -> Services:
    contracts = SqlContractRepository(session)
    proposal_repo = SqlProposalRepository(session)

    lifecycle = ContractLifecycleService(
        contracts,
        SqlActivityLog(session),
        signer,
        clock,
        default_currency=settings.default_currency,
    )
    rules = RenewalRuleService(SqlRenewalRuleStore(session), proposal_repo, clock)
    proposals = RenewalProposalService(
        proposal_repo,
        lifecycle,
        rules,
        RenewalExecutor(lifecycle, proposal_repo),
        notifier,
        SqlUnitOfWork(session),
        clock,
        default_renewal_period=settings.default_renewal_period_months,
        system_actor=settings.system_actor,
    )
    sweep = RenewalSweep(
        rules,
        lifecycle,
        proposal_repo,
        proposals,
        clock,
        lookahead_buffer_days=settings.sweep_lookahead_buffer_days,
        system_actor=settings.system_actor,
    )
    return Services(lifecycle=lifecycle, rules=rules, proposals=proposals, sweep=sweep)
