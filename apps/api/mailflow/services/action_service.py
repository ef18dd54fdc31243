"""Runners for non-email action steps."""

import logging
from typing import Any, Protocol

import httpx

from mailflow.core.config import settings

logger = logging.getLogger(__name__)

WEBHOOK_ACTION = "webhook"


class ActionRunner(Protocol):
    def run(self, action: str, config: dict[str, Any], context: dict[str, Any]) -> None: ...


class WebhookActionRunner:
    """Supports ``action="webhook"`` with ``config={"url": ...}``; raises on anything else."""

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.timeout = timeout or settings.ACTION_TIMEOUT_SECONDS
        self.transport = transport

    def run(self, action: str, config: dict[str, Any], context: dict[str, Any]) -> None:
        if action != WEBHOOK_ACTION:
            raise ValueError(f"Unsupported action: {action}")
        url = config.get("url")
        if not url:
            raise ValueError("Webhook action requires config.url")

        payload = {"event": config.get("event", "automation_action"), **context}
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.post(url, json=payload)
        response.raise_for_status()
