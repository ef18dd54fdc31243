"""Structured logging helpers (PII-safe)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    actor_id: UUID | str | None = None,
    flow_id: UUID | str | None = None,
    enrollment_id: UUID | str | None = None,
    queue_item_id: UUID | str | None = None,
    operation: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict holding identifiers only (never emails or attributes)."""
    context: dict[str, Any] = {}
    if actor_id:
        context["actor_id"] = str(actor_id)
    if flow_id:
        context["flow_id"] = str(flow_id)
    if enrollment_id:
        context["enrollment_id"] = str(enrollment_id)
    if queue_item_id:
        context["queue_item_id"] = str(queue_item_id)
    if operation:
        context["operation"] = operation
    return context
