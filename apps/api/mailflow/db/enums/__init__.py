"""Enum definitions for application constants."""

from mailflow.db.enums.audit import AuditResourceType, AutomationAuditAction
from mailflow.db.enums.automations import (
    ConditionOperator,
    EnrollmentStatus,
    FlowStatus,
    QueueItemStatus,
    StepType,
    TriggerType,
)

DEFAULT_FLOW_STATUS = FlowStatus.DRAFT.value
DEFAULT_ENROLLMENT_STATUS = EnrollmentStatus.ACTIVE.value
DEFAULT_QUEUE_STATUS = QueueItemStatus.PENDING.value

__all__ = [
    "AuditResourceType",
    "AutomationAuditAction",
    "ConditionOperator",
    "EnrollmentStatus",
    "FlowStatus",
    "QueueItemStatus",
    "StepType",
    "TriggerType",
    "DEFAULT_FLOW_STATUS",
    "DEFAULT_ENROLLMENT_STATUS",
    "DEFAULT_QUEUE_STATUS",
]
