"""Optional Sentry error tracking for the API and the queue worker."""

import logging
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from mailflow.core.config import settings

logger = logging.getLogger(__name__)


def init_error_tracking(component: str) -> bool:
    """
    Initialize Sentry when SENTRY_DSN is set outside dev.

    ``component`` is "api" or "worker" and is attached as a tag. Returns True
    when Sentry was initialized.
    """
    if not settings.SENTRY_DSN or settings.ENV == "dev":
        return False

    integrations: list[Any] = [SqlalchemyIntegration()]
    if component == "api":
        integrations.append(FastApiIntegration(transaction_style="endpoint"))

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        release=settings.VERSION,
        integrations=integrations,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,  # Never ship recipient addresses
    )
    sentry_sdk.set_tag("component", component)
    logger.info("Sentry initialized for %s", component)
    return True


def report_exception(exc: BaseException, context: dict[str, Any] | None = None) -> None:
    """Capture an unexpected error with identifier-only tags (no-op without a DSN)."""
    with sentry_sdk.new_scope() as scope:
        for key, value in (context or {}).items():
            scope.set_tag(key, value)
        sentry_sdk.capture_exception(exc)
