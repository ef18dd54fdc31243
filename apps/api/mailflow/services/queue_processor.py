"""Queue processor - claim due items, deliver, and record the outcome.

Safe to run as overlapping invocations: an item is only worked on by the
caller whose compare-and-swap moved it from pending to processing. Each claim
is committed before delivery starts.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from mailflow.core.error_tracking import report_exception
from mailflow.core.structured_logging import build_log_context
from mailflow.db.base import utcnow
from mailflow.db.enums import QueueItemStatus
from mailflow.db.models import AutomationQueueItem
from mailflow.services import enrollment_service
from mailflow.services.delivery_service import DeliveryResult, EmailDelivery

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 20
MAX_ERROR_LENGTH = 1000


@dataclass
class ProcessOutcome:
    processed: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"processed": self.processed, "failed": self.failed}


def get_due_item_ids(
    db: Session, limit: int = DEFAULT_BATCH_SIZE, now: datetime | None = None
) -> list[UUID]:
    """Pending items due by ``now``, oldest first."""
    now = now or utcnow()
    stmt = (
        select(AutomationQueueItem.id)
        .where(
            AutomationQueueItem.status == QueueItemStatus.PENDING.value,
            AutomationQueueItem.scheduled_for <= now,
        )
        .order_by(AutomationQueueItem.scheduled_for)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    return list(db.execute(stmt).scalars())


def claim_item(db: Session, item_id: UUID) -> bool:
    """
    Atomically move one item from pending to processing and commit.

    Returns False if another caller claimed (or cancelled) it first.
    """
    result = db.execute(
        update(AutomationQueueItem)
        .where(
            AutomationQueueItem.id == item_id,
            AutomationQueueItem.status == QueueItemStatus.PENDING.value,
        )
        .values(status=QueueItemStatus.PROCESSING.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def mark_item_sent(db: Session, item: AutomationQueueItem, message_id: str | None) -> None:
    """Record a delivered item and commit."""
    item.status = QueueItemStatus.SENT.value
    item.sent_at = utcnow()
    item.message_id = message_id
    item.error_message = None
    db.commit()


def mark_item_failed(db: Session, item: AutomationQueueItem, error: str) -> None:
    """
    Record a failed delivery attempt.

    Back to pending while attempts remain, else failed for good (until an
    explicit retry).
    """
    item.attempts += 1
    item.error_message = (error or "Unknown error")[:MAX_ERROR_LENGTH]
    if item.attempts >= item.max_attempts:
        item.status = QueueItemStatus.FAILED.value
    else:
        item.status = QueueItemStatus.PENDING.value
    db.commit()


def complete_enrollment_if_drained(db: Session, enrollment_id: UUID, log_context: dict) -> None:
    """
    Completion check run after an item is resolved, in its own transaction.

    The item outcome is already committed, so a failure here is logged and
    leaves the enrollment active; the next resolved item re-runs the check.
    """
    try:
        if enrollment_service.complete_if_drained(db, enrollment_id):
            logger.info("Enrollment completed", extra=log_context)
        db.commit()
    except Exception:
        logger.exception("Enrollment completion check failed", extra=log_context)
        db.rollback()


async def _deliver(
    item: AutomationQueueItem, delivery: EmailDelivery, log_context: dict
) -> DeliveryResult:
    if not item.recipient:
        return DeliveryResult(success=False, error="Recipient email unavailable")
    return await delivery.send(
        item.template_slug,
        item.subject,
        item.recipient,
        dict(item.variables or {}),
        log_context=log_context,
    )


async def _process_item(db: Session, item_id: UUID, delivery: EmailDelivery) -> bool:
    """Deliver one claimed item. Returns True on success."""
    item = db.get(AutomationQueueItem, item_id, populate_existing=True)
    log_context = build_log_context(
        flow_id=item.flow_id, enrollment_id=item.enrollment_id, queue_item_id=item.id
    )
    try:
        result = await _deliver(item, delivery, log_context)
    except Exception as exc:
        logger.warning("Delivery raised for queue item", exc_info=True, extra=log_context)
        result = DeliveryResult(success=False, error=str(exc) or exc.__class__.__name__)

    enrollment_id = item.enrollment_id
    if result.success:
        mark_item_sent(db, item, result.message_id)
        logger.info("Automation email sent", extra=log_context)
        complete_enrollment_if_drained(db, enrollment_id, log_context)
        return True

    mark_item_failed(db, item, result.error or "Delivery failed")
    logger.info(
        "Automation email failed (attempt %s/%s, status=%s)",
        item.attempts,
        item.max_attempts,
        item.status,
        extra=log_context,
    )
    if item.status == QueueItemStatus.FAILED.value:
        complete_enrollment_if_drained(db, enrollment_id, log_context)
    return False


async def process_queue(
    db: Session,
    delivery: EmailDelivery,
    *,
    limit: int = DEFAULT_BATCH_SIZE,
    now: datetime | None = None,
) -> ProcessOutcome:
    """
    Drain up to ``limit`` due items.

    Never raises for a single item: each outcome is isolated and the result
    carries aggregate counts.
    """
    due_ids = get_due_item_ids(db, limit=limit, now=now)
    # Release row locks; the per-item CAS below is the real guard
    db.commit()

    outcome = ProcessOutcome()
    for item_id in due_ids:
        try:
            if not claim_item(db, item_id):
                continue
            if await _process_item(db, item_id, delivery):
                outcome.processed += 1
            else:
                outcome.failed += 1
        except Exception as exc:
            context = build_log_context(queue_item_id=item_id)
            logger.exception("Queue item processing error", extra=context)
            report_exception(exc, context)
            db.rollback()
            outcome.failed += 1

    if due_ids:
        logger.info(
            "Automation queue pass: %d due, %d sent, %d failed",
            len(due_ids),
            outcome.processed,
            outcome.failed,
        )
    return outcome
