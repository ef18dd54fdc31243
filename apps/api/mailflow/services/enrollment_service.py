"""Enrollment manager - admit subjects into active flows and end enrollments."""

import logging
import uuid
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mailflow.core.results import AutomationError, ErrorKind
from mailflow.core.structured_logging import build_log_context
from mailflow.db.base import utcnow
from mailflow.db.enums import EnrollmentStatus, FlowStatus
from mailflow.db.models import AutomationEnrollment, AutomationFlow
from mailflow.db.models.automations import ACTIVE_ENROLLMENT_PREDICATE
from mailflow.services import queue_service
from mailflow.services.action_service import ActionRunner
from mailflow.services.queue_scheduler import ScheduleOutcome, schedule_enrollment
from mailflow.services.subject_service import SubjectDirectory

logger = logging.getLogger(__name__)

DEFAULT_EXIT_REASON = "Manual exit by admin"


def list_enrollments(
    db: Session,
    flow_id: UUID,
    status: EnrollmentStatus | None = None,
    limit: int = 100,
) -> list[AutomationEnrollment]:
    stmt = select(AutomationEnrollment).where(AutomationEnrollment.flow_id == flow_id)
    if status:
        stmt = stmt.where(AutomationEnrollment.status == status.value)
    stmt = stmt.order_by(AutomationEnrollment.enrolled_at.desc()).limit(limit)
    return list(db.execute(stmt).scalars())


def _insert_if_absent(db: Session, values: dict) -> bool:
    """
    Insert an active enrollment unless one exists for (flow, profile).

    Single statement against the partial unique index; returns False on conflict.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        try:
            with db.begin_nested():
                db.add(AutomationEnrollment(**values))
        except IntegrityError:
            return False
        return True

    stmt = (
        insert(AutomationEnrollment.__table__)
        .values(**values)
        .on_conflict_do_nothing(
            index_elements=["flow_id", "profile_id"],
            index_where=text(ACTIVE_ENROLLMENT_PREDICATE),
        )
    )
    result = db.execute(stmt)
    return result.rowcount == 1


def enroll(
    db: Session,
    flow_id: UUID,
    profile_id: UUID,
    *,
    subjects: SubjectDirectory,
    actions: ActionRunner,
    max_attempts: int = 3,
    now: datetime | None = None,
) -> tuple[AutomationEnrollment, ScheduleOutcome]:
    """
    Enroll a subject and schedule the flow's queue items.

    The flow row is re-read (and locked where supported) so a concurrent pause
    cannot slip between the status check and the insert. Does not commit.
    """
    flow = db.execute(
        select(AutomationFlow)
        .where(AutomationFlow.id == flow_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not flow:
        raise AutomationError(ErrorKind.NOT_FOUND, "Automation flow not found", "flow_id")
    if flow.status != FlowStatus.ACTIVE.value:
        raise AutomationError(
            ErrorKind.NOT_ACTIVE, f"Automation flow is {flow.status}, not active", "flow_id"
        )

    now = now or utcnow()
    enrollment_id = uuid.uuid4()
    inserted = _insert_if_absent(
        db,
        {
            "id": enrollment_id,
            "flow_id": flow.id,
            "profile_id": profile_id,
            "status": EnrollmentStatus.ACTIVE.value,
            "current_step": 0,
            "enrolled_at": now,
            "updated_at": now,
        },
    )
    if not inserted:
        raise AutomationError(
            ErrorKind.ALREADY_ENROLLED, "Subject is already enrolled in this flow", "profile_id"
        )

    db.execute(
        update(AutomationFlow)
        .where(AutomationFlow.id == flow.id)
        .values(total_enrolled=AutomationFlow.total_enrolled + 1)
    )

    enrollment = db.get(AutomationEnrollment, enrollment_id)
    outcome = schedule_enrollment(
        db,
        enrollment,
        flow,
        subjects=subjects,
        actions=actions,
        max_attempts=max_attempts,
        now=now,
    )
    if outcome.finished:
        complete_enrollment(db, enrollment, now=now)

    logger.info(
        "Enrolled subject, %d email(s) scheduled",
        len(outcome.items),
        extra=build_log_context(flow_id=flow.id, enrollment_id=enrollment.id),
    )
    return enrollment, outcome


def complete_enrollment(
    db: Session, enrollment: AutomationEnrollment, now: datetime | None = None
) -> bool:
    """Mark an active enrollment completed and bump the flow counter."""
    if enrollment.status != EnrollmentStatus.ACTIVE.value:
        return False
    enrollment.status = EnrollmentStatus.COMPLETED.value
    enrollment.completed_at = now or utcnow()
    db.execute(
        update(AutomationFlow)
        .where(AutomationFlow.id == enrollment.flow_id)
        .values(total_completed=AutomationFlow.total_completed + 1)
    )
    db.flush()
    return True


def complete_if_drained(db: Session, enrollment_id: UUID) -> bool:
    """Complete the enrollment once its last open queue item is resolved."""
    enrollment = db.get(AutomationEnrollment, enrollment_id)
    if not enrollment or enrollment.status != EnrollmentStatus.ACTIVE.value:
        return False
    if queue_service.has_open_items(db, enrollment_id):
        return False
    return complete_enrollment(db, enrollment)


def exit_enrollment(
    db: Session, enrollment_id: UUID, reason: str | None = None
) -> tuple[AutomationEnrollment, int]:
    """
    Exit an enrollment and cancel its pending items.

    Exiting an enrollment that is no longer active is a no-op.
    Returns the enrollment and the number of cancelled items. Does not commit.
    """
    enrollment = db.get(AutomationEnrollment, enrollment_id)
    if not enrollment:
        raise AutomationError(ErrorKind.NOT_FOUND, "Enrollment not found", "enrollment_id")
    if enrollment.status != EnrollmentStatus.ACTIVE.value:
        return enrollment, 0

    enrollment.status = EnrollmentStatus.EXITED.value
    enrollment.exited_at = utcnow()
    enrollment.exit_reason = reason or DEFAULT_EXIT_REASON
    cancelled = queue_service.cancel_pending(db, enrollment_id=enrollment.id)
    db.flush()
    return enrollment, cancelled


def exit_active_enrollments(db: Session, flow_id: UUID, reason: str) -> int:
    """Exit every active enrollment of a flow (pause/archive cascade)."""
    now = utcnow()
    result = db.execute(
        update(AutomationEnrollment)
        .where(
            AutomationEnrollment.flow_id == flow_id,
            AutomationEnrollment.status == EnrollmentStatus.ACTIVE.value,
        )
        .values(
            status=EnrollmentStatus.EXITED.value,
            exited_at=now,
            exit_reason=reason,
            updated_at=now,
        )
    )
    return result.rowcount or 0


def record_conversion(db: Session, enrollment_id: UUID) -> AutomationEnrollment:
    """Stamp an enrollment as converted once and bump the flow counter."""
    enrollment = db.get(AutomationEnrollment, enrollment_id)
    if not enrollment:
        raise AutomationError(ErrorKind.NOT_FOUND, "Enrollment not found", "enrollment_id")
    if enrollment.converted_at is None:
        enrollment.converted_at = utcnow()
        db.execute(
            update(AutomationFlow)
            .where(AutomationFlow.id == enrollment.flow_id)
            .values(total_converted=AutomationFlow.total_converted + 1)
        )
        db.flush()
    return enrollment
