"""SQLAlchemy persistence for the contract engine."""
