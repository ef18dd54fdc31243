"""Per-flow enrollment, email and performance metrics."""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mailflow.db.enums import EnrollmentStatus, QueueItemStatus
from mailflow.db.models import AutomationEnrollment, AutomationFlow, AutomationQueueItem
from mailflow.schemas.automation import (
    EmailStats,
    EnrollmentStats,
    FlowInsights,
    PerformanceStats,
)


def conversion_rate(total_converted: int, total_completed: int) -> int:
    """Whole-number percentage of completed enrollments that converted."""
    if not total_completed:
        return 0
    return round(total_converted / total_completed * 100)


def _average_completion_minutes(db: Session, flow_id: UUID) -> float | None:
    rows = db.execute(
        select(AutomationEnrollment.enrolled_at, AutomationEnrollment.completed_at).where(
            AutomationEnrollment.flow_id == flow_id,
            AutomationEnrollment.status == EnrollmentStatus.COMPLETED.value,
            AutomationEnrollment.completed_at.is_not(None),
        )
    ).all()
    if not rows:
        return None
    total_seconds = sum(
        (completed_at - enrolled_at).total_seconds() for enrolled_at, completed_at in rows
    )
    return round(total_seconds / len(rows) / 60, 1)


def get_flow_insights(db: Session, flow: AutomationFlow) -> FlowInsights:
    enrollment_counts = dict(
        db.execute(
            select(AutomationEnrollment.status, func.count())
            .where(AutomationEnrollment.flow_id == flow.id)
            .group_by(AutomationEnrollment.status)
        ).all()
    )
    email_counts = dict(
        db.execute(
            select(AutomationQueueItem.status, func.count())
            .where(AutomationQueueItem.flow_id == flow.id)
            .group_by(AutomationQueueItem.status)
        ).all()
    )

    return FlowInsights(
        flow_id=flow.id,
        enrollments=EnrollmentStats(
            total=sum(enrollment_counts.values()),
            active=enrollment_counts.get(EnrollmentStatus.ACTIVE.value, 0),
            completed=enrollment_counts.get(EnrollmentStatus.COMPLETED.value, 0),
            exited=enrollment_counts.get(EnrollmentStatus.EXITED.value, 0),
        ),
        emails=EmailStats(
            sent=email_counts.get(QueueItemStatus.SENT.value, 0),
            failed=email_counts.get(QueueItemStatus.FAILED.value, 0),
            pending=email_counts.get(QueueItemStatus.PENDING.value, 0),
        ),
        performance=PerformanceStats(
            avg_completion_minutes=_average_completion_minutes(db, flow.id),
            conversion_rate=conversion_rate(flow.total_converted, flow.total_completed),
        ),
    )
