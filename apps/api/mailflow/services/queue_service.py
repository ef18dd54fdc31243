"""Bulk operations and read views over the automation queue.

Functions here flush but do not commit; the caller owns the transaction so a
cascade lands atomically with the state change that caused it.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from mailflow.db.base import utcnow
from mailflow.db.enums import QueueItemStatus
from mailflow.db.models import AutomationQueueItem
from mailflow.schemas.automation import QueueStatus


def cancel_pending(
    db: Session,
    flow_id: UUID | None = None,
    enrollment_id: UUID | None = None,
) -> int:
    """Flip pending items to cancelled. Claimed (processing) items are untouched."""
    stmt = update(AutomationQueueItem).where(
        AutomationQueueItem.status == QueueItemStatus.PENDING.value
    )
    if flow_id is not None:
        stmt = stmt.where(AutomationQueueItem.flow_id == flow_id)
    if enrollment_id is not None:
        stmt = stmt.where(AutomationQueueItem.enrollment_id == enrollment_id)
    result = db.execute(
        stmt.values(status=QueueItemStatus.CANCELLED.value, updated_at=utcnow())
    )
    return result.rowcount or 0


def retry_failed(db: Session, flow_id: UUID | None = None) -> int:
    """Reset failed items to pending with attempts zeroed and the error cleared."""
    stmt = update(AutomationQueueItem).where(
        AutomationQueueItem.status == QueueItemStatus.FAILED.value
    )
    if flow_id is not None:
        stmt = stmt.where(AutomationQueueItem.flow_id == flow_id)
    result = db.execute(
        stmt.values(
            status=QueueItemStatus.PENDING.value,
            attempts=0,
            error_message=None,
            updated_at=utcnow(),
        )
    )
    return result.rowcount or 0


def get_queue_status(db: Session, flow_id: UUID | None = None) -> QueueStatus:
    """Counts per status plus the earliest pending send time."""
    counts_stmt = select(AutomationQueueItem.status, func.count()).group_by(
        AutomationQueueItem.status
    )
    next_stmt = select(func.min(AutomationQueueItem.scheduled_for)).where(
        AutomationQueueItem.status == QueueItemStatus.PENDING.value
    )
    if flow_id is not None:
        counts_stmt = counts_stmt.where(AutomationQueueItem.flow_id == flow_id)
        next_stmt = next_stmt.where(AutomationQueueItem.flow_id == flow_id)

    counts = {status: count for status, count in db.execute(counts_stmt).all()}
    next_scheduled = db.execute(next_stmt).scalar()

    return QueueStatus(
        pending=counts.get(QueueItemStatus.PENDING.value, 0),
        processing=counts.get(QueueItemStatus.PROCESSING.value, 0),
        sent=counts.get(QueueItemStatus.SENT.value, 0),
        failed=counts.get(QueueItemStatus.FAILED.value, 0),
        cancelled=counts.get(QueueItemStatus.CANCELLED.value, 0),
        next_scheduled=next_scheduled,
    )


def count_due(db: Session, now: datetime | None = None) -> int:
    now = now or utcnow()
    return db.execute(
        select(func.count()).where(
            AutomationQueueItem.status == QueueItemStatus.PENDING.value,
            AutomationQueueItem.scheduled_for <= now,
        )
    ).scalar_one()


def has_open_items(db: Session, enrollment_id: UUID) -> bool:
    """True while any item of the enrollment is pending or processing."""
    return (
        db.execute(
            select(AutomationQueueItem.id)
            .where(
                AutomationQueueItem.enrollment_id == enrollment_id,
                AutomationQueueItem.status.in_(
                    [QueueItemStatus.PENDING.value, QueueItemStatus.PROCESSING.value]
                ),
            )
            .limit(1)
        ).first()
        is not None
    )


def highest_open_step_index(db: Session, flow_id: UUID) -> int | None:
    """Largest step_index a pending or processing item of the flow points at."""
    return db.execute(
        select(func.max(AutomationQueueItem.step_index)).where(
            AutomationQueueItem.flow_id == flow_id,
            AutomationQueueItem.status.in_(
                [QueueItemStatus.PENDING.value, QueueItemStatus.PROCESSING.value]
            ),
        )
    ).scalar()
