"""SQLAlchemy ORM models for email automations."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from mailflow.db.base import Base, utcnow
from mailflow.db.enums import (
    DEFAULT_ENROLLMENT_STATUS,
    DEFAULT_FLOW_STATUS,
    DEFAULT_QUEUE_STATUS,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")

ACTIVE_ENROLLMENT_PREDICATE = "status = 'active'"
LIVE_FLOW_PREDICATE = "status != 'archived'"


class AutomationFlow(Base):
    """
    Named, ordered sequence of automation steps.

    Steps are stored as a JSON list validated by schemas.automation.Step.
    Name is unique among non-archived flows (checked by the service, not the
    store). Counters only ever increase.
    """

    __tablename__ = "automation_flows"
    __table_args__ = (
        Index(
            "idx_automation_flows_live_name",
            "name",
            postgresql_where=text(LIVE_FLOW_PREDICATE),
            sqlite_where=text(LIVE_FLOW_PREDICATE),
        ),
        Index("idx_automation_flows_status", "status", "updated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    trigger_type: Mapped[str] = mapped_column(String(50), nullable=False, default="manual")
    trigger_config: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    steps: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DEFAULT_FLOW_STATUS
    )

    total_enrolled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_converted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, default=utcnow, onupdate=utcnow
    )


class AutomationEnrollment(Base):
    """
    One subject's traversal of one flow.

    At most one active enrollment per (flow, profile), enforced by a partial
    unique index that enrollment inserts target with ON CONFLICT DO NOTHING.
    """

    __tablename__ = "automation_enrollments"
    __table_args__ = (
        Index(
            "uq_automation_enrollments_active",
            "flow_id",
            "profile_id",
            unique=True,
            postgresql_where=text(ACTIVE_ENROLLMENT_PREDICATE),
            sqlite_where=text(ACTIVE_ENROLLMENT_PREDICATE),
        ),
        Index("idx_automation_enrollments_flow_status", "flow_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    flow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("automation_flows.id", ondelete="CASCADE"), nullable=False
    )
    profile_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DEFAULT_ENROLLMENT_STATUS
    )
    # Index of the next step the scheduler has not yet walked
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    enrolled_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    exited_at: Mapped[datetime | None] = mapped_column(nullable=True)
    exit_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, default=utcnow, onupdate=utcnow
    )


class AutomationQueueItem(Base):
    """
    One scheduled email derived from one email step of one enrollment.

    Lifecycle: pending -> processing -> sent | failed (or back to pending on
    a retryable failure). Only pending items can be cancelled.
    """

    __tablename__ = "automation_queue"
    __table_args__ = (
        Index(
            "idx_automation_queue_due",
            "status",
            "scheduled_for",
        ),
        Index("idx_automation_queue_enrollment", "enrollment_id", "status"),
        Index("idx_automation_queue_flow", "flow_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    flow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("automation_flows.id", ondelete="CASCADE"), nullable=False
    )
    enrollment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("automation_enrollments.id", ondelete="CASCADE"), nullable=False
    )
    profile_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    template_slug: Mapped[str] = mapped_column(String(200), nullable=False)
    subject: Mapped[str] = mapped_column(String(300), nullable=False)
    recipient: Mapped[str | None] = mapped_column(String(320), nullable=True)
    variables: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DEFAULT_QUEUE_STATUS
    )
    scheduled_for: Mapped[datetime] = mapped_column(nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, default=utcnow, onupdate=utcnow
    )
