"""Contract Engine: contract lifecycle state machine and rule-driven renewals."""

__version__ = "0.1.0"
