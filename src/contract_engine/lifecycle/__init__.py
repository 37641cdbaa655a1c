"""Contract lifecycle state machine."""

from contract_engine.lifecycle.service import ContractLifecycleService
from contract_engine.lifecycle.transitions import ContractAction

__all__ = ["ContractAction", "ContractLifecycleService"]
