"""Rule-driven renewal engine."""

from contract_engine.renewal.executor import RenewalExecutor
from contract_engine.renewal.proposals import RenewalProposalService
from contract_engine.renewal.rules import RenewalRuleService
from contract_engine.renewal.sweep import RenewalSweep

__all__ = [
    "RenewalExecutor",
    "RenewalProposalService",
    "RenewalRuleService",
    "RenewalSweep",
]
