"""Repository interfaces and their SQLAlchemy implementations."""

from contract_engine.store.activity import ActivityLog, SqlActivityLog
from contract_engine.store.base import SqlUnitOfWork, UnitOfWork
from contract_engine.store.contracts import ContractRepository, SqlContractRepository
from contract_engine.store.proposals import ProposalRepository, SqlProposalRepository
from contract_engine.store.rules import RenewalRuleStore, SqlRenewalRuleStore

__all__ = [
    "ActivityLog",
    "ContractRepository",
    "ProposalRepository",
    "RenewalRuleStore",
    "SqlActivityLog",
    "SqlContractRepository",
    "SqlProposalRepository",
    "SqlRenewalRuleStore",
    "SqlUnitOfWork",
    "UnitOfWork",
]
