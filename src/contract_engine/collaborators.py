"""Narrow interfaces to the signing and notification collaborators.

The lifecycle core only needs a workflow id when a contract is sent for
signature and a yes/no on whether every party has signed. Notifications
are fire-and-forget: a failing notifier is logged and never rolls back
the operation that triggered it.
"""

from __future__ import annotations

import uuid
from typing import Any, Protocol

import httpx
import structlog

from contract_engine.models import Contract, NotificationChannel

logger = structlog.get_logger(__name__)


class SignatureProvider(Protocol):
    def request_signature(self, contract: Contract) -> str:
        """Start a signing workflow and return its opaque id."""
        ...

    def is_fully_signed(self, contract: Contract) -> bool: ...


class Notifier(Protocol):
    def notify(
        self,
        recipients: list[str],
        channels: list[NotificationChannel],
        template: str,
        payload: dict[str, Any],
    ) -> None: ...


class LocalSignatureProvider:
    """Signing stand-in for deployments where signatures are written back
    onto the contract's parties by a separate service.
    """

    def request_signature(self, contract: Contract) -> str:
        workflow_id = f"workflow_{uuid.uuid4().hex[:12]}"
        logger.info(
            "signature_workflow_started",
            contract_id=contract.id,
            workflow_id=workflow_id,
            parties=len(contract.parties),
        )
        return workflow_id

    def is_fully_signed(self, contract: Contract) -> bool:
        return bool(contract.parties) and all(p.signed_at is not None for p in contract.parties)


class LogNotifier:
    """Writes notifications to the structured log."""

    def notify(
        self,
        recipients: list[str],
        channels: list[NotificationChannel],
        template: str,
        payload: dict[str, Any],
    ) -> None:
        logger.info(
            "notification_dispatched",
            template=template,
            recipients=recipients,
            channels=[c.value for c in channels],
            payload=payload,
        )


class WebhookNotifier:
    """POSTs each notification as JSON to a configured endpoint."""

    def __init__(self, url: str, timeout: float = 5.0, client: httpx.Client | None = None) -> None:
        self._url = url
        self._client = client or httpx.Client(timeout=timeout)

    def notify(
        self,
        recipients: list[str],
        channels: list[NotificationChannel],
        template: str,
        payload: dict[str, Any],
    ) -> None:
        response = self._client.post(
            self._url,
            json={
                "recipients": recipients,
                "channels": [c.value for c in channels],
                "template": template,
                "payload": payload,
            },
        )
        response.raise_for_status()
        logger.debug("webhook_notification_sent", url=self._url, status=response.status_code)

    def close(self) -> None:
        self._client.close()
