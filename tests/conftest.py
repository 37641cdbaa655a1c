"""Test fixtures for the Contract Engine."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

import pytest

NOW = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
TENANT = "tenant-a"
ACTOR = "alice"


class RecordingNotifier:
    """Notifier that keeps every call for assertions."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    def notify(self, recipients, channels, template, payload) -> None:
        self.sent.append(
            {
                "recipients": list(recipients),
                "channels": list(channels),
                "template": template,
                "payload": payload,
            }
        )


class FailingNotifier:
    def notify(self, recipients, channels, template, payload) -> None:
        raise RuntimeError("notification backend unavailable")


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set up test environment variables."""
    monkeypatch.setenv("ENVIRONMENT", "testing")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    for key in ("DATABASE_URL", "NOTIFICATION_WEBHOOK_URL"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def settings():
    """Create test settings."""
    from contract_engine.config import Settings

    return Settings(
        environment="testing",
        log_level="DEBUG",
        database_url="sqlite://",
    )


@pytest.fixture()
def engine(settings):
    """Fresh in-memory database per test."""
    from contract_engine.db.engine import build_engine, create_tables

    engine = build_engine(settings.database_url)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def clock():
    from contract_engine.clock import FixedClock

    return FixedClock(NOW)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def session(engine):
    from contract_engine.db.engine import make_session_factory

    session = make_session_factory(engine)()
    yield session
    session.rollback()
    session.close()


@pytest.fixture()
def services(session, settings, clock, notifier):
    from contract_engine.collaborators import LocalSignatureProvider
    from contract_engine.wiring import build_services

    return build_services(
        session,
        settings,
        clock=clock,
        notifier=notifier,
        signer=LocalSignatureProvider(),
    )


def contract_payload(**overrides: Any):
    """A valid ContractCreate: membership, 1000.00, ends 30 days after NOW."""
    from contract_engine.models import ContractCreate, ContractParty, PartyRole

    data: dict[str, Any] = {
        "type": "MEMBERSHIP",
        "title": "Hot Desk Membership",
        "content": "Access to shared desks, Monday to Friday.",
        "parties": [
            ContractParty(
                name="Jane Client",
                email="jane@client.example",
                role=PartyRole.CLIENT,
                client_id="client-1",
            ),
            ContractParty(
                name="Cowork Ops",
                email="ops@cowork.example",
                role=PartyRole.COMPANY,
            ),
        ],
        "start_date": date(2024, 1, 31),
        "end_date": date(2025, 1, 31),
        "value": Decimal("1000.00"),
    }
    data.update(overrides)
    return ContractCreate(**data)


@pytest.fixture()
def make_contract(services):
    """Create a DRAFT contract."""

    def _make(**overrides: Any):
        return services.lifecycle.create_contract(TENANT, ACTOR, contract_payload(**overrides))

    return _make


@pytest.fixture()
def make_active_contract(services, make_contract):
    """Create a contract and take it through signing to ACTIVE."""

    def _make(**overrides: Any):
        contract = make_contract(**overrides)
        lifecycle = services.lifecycle
        contract = lifecycle.send_for_signature(TENANT, contract.id, ACTOR)
        for party in contract.parties:
            lifecycle.record_signature(TENANT, contract.id, party.id, ACTOR)
        return lifecycle.activate_contract(TENANT, contract.id, ACTOR)

    return _make


def rule_payload(**overrides: Any):
    """A valid RuleCreate: membership, 30 days before expiry, manual, +5%."""
    from contract_engine.models import RuleCreate

    data: dict[str, Any] = {
        "name": "Membership renewal",
        "contract_types": ["MEMBERSHIP"],
        "trigger": "DAYS_BEFORE_EXPIRY",
        "trigger_days": 30,
        "renewal_type": "EXTEND_CURRENT",
        "auto_approve": False,
        "renewal_period": 12,
        "price_adjustment": {"kind": "PERCENTAGE", "value": "5"},
    }
    data.update(overrides)
    return RuleCreate(**data)


@pytest.fixture()
def make_rule(services):
    def _make(**overrides: Any):
        return services.rules.create_rule(TENANT, ACTOR, rule_payload(**overrides))

    return _make


@pytest.fixture()
def app(settings, engine, clock, notifier):
    """Create a test FastAPI application."""
    from contract_engine.api import create_app

    return create_app(settings, engine=engine, clock=clock, notifier=notifier)


@pytest.fixture()
def client(app):
    """Create an async test client."""
    from httpx import ASGITransport, AsyncClient

    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://test")
