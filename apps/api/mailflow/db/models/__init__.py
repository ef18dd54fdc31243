"""SQLAlchemy ORM models."""

from mailflow.db.models.audit import AuditLogEntry
from mailflow.db.models.automations import (
    AutomationEnrollment,
    AutomationFlow,
    AutomationQueueItem,
)

__all__ = [
    "AuditLogEntry",
    "AutomationEnrollment",
    "AutomationFlow",
    "AutomationQueueItem",
]
