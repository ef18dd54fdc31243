"""Email delivery collaborator.

Rendering and transport belong to the delivery service; this module only
posts the template reference, subject, recipient and variables to it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from mailflow.core.config import settings
from mailflow.services.http_service import RetryPolicy, request_with_retries

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class EmailDelivery(Protocol):
    async def send(
        self,
        template_ref: str,
        subject: str,
        recipient: str,
        variables: dict[str, Any],
        *,
        log_context: dict[str, Any] | None = None,
    ) -> DeliveryResult: ...


class HttpDelivery:
    """Send via the email delivery HTTP endpoint."""

    def __init__(
        self,
        url: str,
        token: str = "",
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy.for_delivery()

    async def send(
        self,
        template_ref: str,
        subject: str,
        recipient: str,
        variables: dict[str, Any],
        *,
        log_context: dict[str, Any] | None = None,
    ) -> DeliveryResult:
        payload = {
            "action": "send",
            "template": template_ref,
            "subject": subject,
            "to": recipient,
            "variables": variables,
        }
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await request_with_retries(
                    lambda: client.post(self.url, json=payload, headers=headers),
                    self.retry_policy,
                    log_context=log_context,
                )
        except httpx.HTTPError as exc:
            return DeliveryResult(success=False, error=f"Delivery request failed: {exc}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            message = body.get("error") or body.get("message") or response.text[:500]
            return DeliveryResult(
                success=False, error=f"Delivery error {response.status_code}: {message}"
            )
        if not body.get("success", True):
            return DeliveryResult(
                success=False, error=body.get("error") or body.get("message") or "Send failed"
            )
        return DeliveryResult(success=True, message_id=body.get("messageId"))


class DryRunDelivery:
    """Log instead of sending (no delivery URL configured)."""

    async def send(
        self,
        template_ref: str,
        subject: str,
        recipient: str,
        variables: dict[str, Any],
        *,
        log_context: dict[str, Any] | None = None,
    ) -> DeliveryResult:
        logger.info(
            "[DRY RUN] Would send automation email template=%s", template_ref, extra=log_context or {}
        )
        return DeliveryResult(success=True, message_id="dry-run")


def get_email_delivery() -> EmailDelivery:
    if not settings.EMAIL_DELIVERY_URL:
        return DryRunDelivery()
    return HttpDelivery(
        settings.EMAIL_DELIVERY_URL,
        token=settings.EMAIL_DELIVERY_TOKEN,
        timeout=settings.DELIVERY_TIMEOUT_SECONDS,
    )
