"""Pydantic schemas for API request/response models."""

from mailflow.schemas.automation import (
    ActionStep,
    BulkStatusResult,
    ConditionStep,
    DelayStep,
    EmailStep,
    EnrollmentRead,
    FlowCreate,
    FlowInsights,
    FlowRead,
    FlowUpdate,
    ProcessQueueResult,
    QueueStatus,
    Step,
    StepCondition,
)

__all__ = [
    "ActionStep",
    "BulkStatusResult",
    "ConditionStep",
    "DelayStep",
    "EmailStep",
    "EnrollmentRead",
    "FlowCreate",
    "FlowInsights",
    "FlowRead",
    "FlowUpdate",
    "ProcessQueueResult",
    "QueueStatus",
    "Step",
    "StepCondition",
]
