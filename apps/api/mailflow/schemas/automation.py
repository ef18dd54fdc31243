"""Pydantic schemas for email automation flows, enrollments and the queue."""

from datetime import datetime
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from mailflow.db.enums import ConditionOperator, EnrollmentStatus, FlowStatus


# =============================================================================
# Steps (discriminated on "type")
# =============================================================================


class EmailStep(BaseModel):
    type: Literal["email"] = "email"
    template_slug: str = Field(..., min_length=1, max_length=200)
    subject: str = Field(..., min_length=1, max_length=300)


class DelayStep(BaseModel):
    type: Literal["delay"] = "delay"
    delay_minutes: int = Field(..., ge=0)


class StepCondition(BaseModel):
    """Predicate evaluated against the subject's attributes."""

    field: str = Field(..., min_length=1, max_length=100)
    operator: ConditionOperator = ConditionOperator.EQUALS
    value: Any = None


class ConditionStep(BaseModel):
    type: Literal["condition"] = "condition"
    condition: StepCondition


class ActionStep(BaseModel):
    type: Literal["action"] = "action"
    action: str = Field(..., min_length=1, max_length=50)
    config: dict[str, Any] = Field(default_factory=dict)


Step = Annotated[
    Union[EmailStep, DelayStep, ConditionStep, ActionStep],
    Field(discriminator="type"),
]

step_list_adapter = TypeAdapter(list[Step])


def parse_steps(raw: list[dict] | None) -> list[Step]:
    """Validate stored step dicts into typed steps."""
    return step_list_adapter.validate_python(raw or [])


def dump_steps(steps: list[Step]) -> list[dict]:
    return [step.model_dump(mode="json") for step in steps]


# =============================================================================
# Flows
# =============================================================================


class FlowCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=2000)
    trigger_type: str = Field("manual", min_length=1, max_length=50)
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    steps: list[Step] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v


class FlowUpdate(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, max_length=2000)
    trigger_type: str | None = Field(None, min_length=1, max_length=50)
    trigger_config: dict[str, Any] | None = None
    steps: list[Step] | None = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v


class FlowRead(BaseModel):
    id: UUID
    name: str
    description: str | None
    trigger_type: str
    trigger_config: dict[str, Any]
    steps: list[Step]
    status: FlowStatus
    total_enrolled: int
    total_completed: int
    total_converted: int
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BulkFailure(BaseModel):
    id: str
    kind: str
    message: str


class BulkStatusResult(BaseModel):
    updated: int
    failed: list[BulkFailure] = Field(default_factory=list)


# =============================================================================
# Enrollments
# =============================================================================


class EnrollmentRead(BaseModel):
    id: UUID
    flow_id: UUID
    profile_id: UUID
    status: EnrollmentStatus
    current_step: int
    enrolled_at: datetime
    completed_at: datetime | None
    exited_at: datetime | None
    exit_reason: str | None

    model_config = {"from_attributes": True}


# =============================================================================
# Queue
# =============================================================================


class ProcessQueueRequest(BaseModel):
    limit: int | None = Field(None, ge=1, le=500)
    dry_run: bool = False


class ProcessQueueResult(BaseModel):
    processed: int
    failed: int
    due: int | None = None  # Only set for dry runs


class QueueBulkResult(BaseModel):
    """Outcome of cancel-pending / retry-failed."""

    count: int


class QueueStatus(BaseModel):
    pending: int = 0
    processing: int = 0
    sent: int = 0
    failed: int = 0
    cancelled: int = 0
    next_scheduled: datetime | None = None


# =============================================================================
# Insights
# =============================================================================


class EnrollmentStats(BaseModel):
    total: int
    active: int
    completed: int
    exited: int


class EmailStats(BaseModel):
    sent: int
    failed: int
    pending: int


class PerformanceStats(BaseModel):
    avg_completion_minutes: float | None
    conversion_rate: int


class FlowInsights(BaseModel):
    flow_id: UUID
    enrollments: EnrollmentStats
    emails: EmailStats
    performance: PerformanceStats
