"""Flow repository - CRUD and status transitions for automation flows.

Name uniqueness among non-archived flows is a check-then-act guard; two
concurrent creates can still race to the same name.

Functions flush but do not commit. The caller commits once per operation so a
state change and its cascade land together.
"""

import logging
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from mailflow.core.results import AutomationError, ErrorKind
from mailflow.db.enums import FlowStatus
from mailflow.db.models import AutomationEnrollment, AutomationFlow, AutomationQueueItem
from mailflow.schemas.automation import FlowCreate, FlowUpdate, dump_steps
from mailflow.services import enrollment_service, queue_service, step_validator

logger = logging.getLogger(__name__)

DEFAULT_DUPLICATE_NAME_ATTEMPTS = 100
TOGGLE_STATUSES = {FlowStatus.ACTIVE.value, FlowStatus.PAUSED.value}

PAUSE_EXIT_REASON = "Flow paused"
ARCHIVE_EXIT_REASON = "Flow archived"


# =============================================================================
# Reads
# =============================================================================


def require_flow(db: Session, flow_id: UUID) -> AutomationFlow:
    flow = db.get(AutomationFlow, flow_id)
    if not flow:
        raise AutomationError(ErrorKind.NOT_FOUND, "Automation flow not found", "id")
    return flow


def list_flows(
    db: Session,
    status: FlowStatus | None = None,
    include_archived: bool = False,
) -> list[AutomationFlow]:
    stmt = select(AutomationFlow)
    if status:
        stmt = stmt.where(AutomationFlow.status == status.value)
    elif not include_archived:
        stmt = stmt.where(AutomationFlow.status != FlowStatus.ARCHIVED.value)
    return list(db.execute(stmt.order_by(AutomationFlow.created_at.desc())).scalars())


def find_live_flow_by_name(
    db: Session, name: str, exclude_id: UUID | None = None
) -> AutomationFlow | None:
    """Non-archived flow with exactly this name, optionally ignoring one id."""
    stmt = select(AutomationFlow).where(
        AutomationFlow.name == name,
        AutomationFlow.status != FlowStatus.ARCHIVED.value,
    )
    if exclude_id is not None:
        stmt = stmt.where(AutomationFlow.id != exclude_id)
    return db.execute(stmt.limit(1)).scalar_one_or_none()


def _ensure_name_free(db: Session, name: str, exclude_id: UUID | None = None) -> None:
    if find_live_flow_by_name(db, name, exclude_id=exclude_id):
        raise AutomationError(
            ErrorKind.DUPLICATE_NAME, f"An automation named '{name}' already exists", "name"
        )


# =============================================================================
# Writes
# =============================================================================


def create_flow(db: Session, data: FlowCreate, created_by: UUID | None = None) -> AutomationFlow:
    """Create a draft flow."""
    _ensure_name_free(db, data.name)
    flow = AutomationFlow(
        name=data.name,
        description=data.description,
        trigger_type=data.trigger_type,
        trigger_config=data.trigger_config,
        steps=dump_steps(data.steps),
        status=FlowStatus.DRAFT.value,
        created_by=created_by,
    )
    db.add(flow)
    db.flush()
    return flow


def _ensure_scheduled_steps_unchanged(
    db: Session, flow: AutomationFlow, new_steps: list[dict]
) -> None:
    """Steps up to the highest index an open queue item points at are frozen."""
    highest = queue_service.highest_open_step_index(db, flow.id)
    if highest is None:
        return
    if new_steps[: highest + 1] != (flow.steps or [])[: highest + 1]:
        raise AutomationError(
            ErrorKind.VALIDATION_ERROR,
            f"Steps 1-{highest + 1} are referenced by scheduled emails; only later steps can change",
            "steps",
        )


def update_flow(db: Session, flow_id: UUID, data: FlowUpdate) -> AutomationFlow:
    """
    Apply a partial update.

    Archived flows are read-only. An active flow cannot be edited into a step
    list that would fail activation.

    Steps referenced by pending or processing queue items keep their
    position; edits may only append or change steps after them.
    """
    flow = require_flow(db, flow_id)
    if flow.status == FlowStatus.ARCHIVED.value:
        raise AutomationError(ErrorKind.ARCHIVED, "Archived automations cannot be edited")

    fields = data.model_fields_set
    if "name" in fields and data.name is not None and data.name != flow.name:
        _ensure_name_free(db, data.name, exclude_id=flow.id)
        flow.name = data.name
    if "description" in fields:
        flow.description = data.description
    if "trigger_type" in fields and data.trigger_type is not None:
        flow.trigger_type = data.trigger_type
    if "trigger_config" in fields and data.trigger_config is not None:
        flow.trigger_config = data.trigger_config
    if "steps" in fields and data.steps is not None:
        new_steps = dump_steps(data.steps)
        _ensure_scheduled_steps_unchanged(db, flow, new_steps)
        if flow.status == FlowStatus.ACTIVE.value:
            step_validator.validate_for_activation(new_steps)
        flow.steps = new_steps

    db.flush()
    return flow


def _check_deletable(flow: AutomationFlow) -> None:
    if flow.status == FlowStatus.ACTIVE.value and flow.total_enrolled > 0:
        raise AutomationError(
            ErrorKind.HAS_ENROLLMENTS,
            "Automation has enrollments; pause it before deleting",
        )


def archive_flow(db: Session, flow: AutomationFlow) -> int:
    """Archive a flow and cascade. Returns the number of cancelled queue items."""
    flow.status = FlowStatus.ARCHIVED.value
    cancelled = queue_service.cancel_pending(db, flow_id=flow.id)
    enrollment_service.exit_active_enrollments(db, flow.id, ARCHIVE_EXIT_REASON)
    db.flush()
    return cancelled


def delete_flow(db: Session, flow_id: UUID, hard: bool = False) -> dict:
    """
    Soft delete (archive) or hard delete a flow.

    Either way an active flow with enrollments must be paused first.
    """
    flow = require_flow(db, flow_id)
    _check_deletable(flow)

    if hard:
        db.execute(delete(AutomationQueueItem).where(AutomationQueueItem.flow_id == flow.id))
        db.execute(
            delete(AutomationEnrollment).where(AutomationEnrollment.flow_id == flow.id)
        )
        db.delete(flow)
        db.flush()
        return {"id": str(flow_id), "deleted": True, "cancelled": 0}

    if flow.status == FlowStatus.ARCHIVED.value:
        return {"id": str(flow_id), "deleted": False, "cancelled": 0}
    cancelled = archive_flow(db, flow)
    return {"id": str(flow_id), "deleted": False, "cancelled": cancelled}


def next_copy_name(
    db: Session, name: str, max_attempts: int = DEFAULT_DUPLICATE_NAME_ATTEMPTS
) -> str:
    """'<name> (Copy)', then '<name> (Copy 2)', ... until a free name is found."""
    candidate = f"{name} (Copy)"
    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            candidate = f"{name} (Copy {attempt})"
        if not find_live_flow_by_name(db, candidate):
            return candidate
    raise RuntimeError(f"No free copy name for '{name}' after {max_attempts} attempts")


def duplicate_flow(
    db: Session,
    flow_id: UUID,
    created_by: UUID | None = None,
    max_name_attempts: int = DEFAULT_DUPLICATE_NAME_ATTEMPTS,
) -> AutomationFlow:
    """Copy a flow's definition into a new draft with a disambiguated name."""
    source = require_flow(db, flow_id)
    copy = AutomationFlow(
        name=next_copy_name(db, source.name, max_attempts=max_name_attempts),
        description=source.description,
        trigger_type=source.trigger_type,
        trigger_config=dict(source.trigger_config or {}),
        steps=list(source.steps or []),
        status=FlowStatus.DRAFT.value,
        created_by=created_by,
    )
    db.add(copy)
    db.flush()
    return copy


def set_flow_status(db: Session, flow_id: UUID, target: str) -> tuple[AutomationFlow, int]:
    """
    Toggle a flow between active and paused.

    Activation runs the step validator first. Pausing cancels every pending
    queue item and exits active enrollments; re-activating does not replay
    them. Returns the flow and the number of cancelled items.
    """
    if target not in TOGGLE_STATUSES:
        raise AutomationError(
            ErrorKind.INVALID_STATUS, "Status must be 'active' or 'paused'", "status"
        )
    flow = require_flow(db, flow_id)
    if flow.status == FlowStatus.ARCHIVED.value:
        raise AutomationError(ErrorKind.ARCHIVED, "Archived automations cannot change status")

    cancelled = 0
    if target == FlowStatus.ACTIVE.value:
        step_validator.validate_for_activation(flow.steps or [])
        flow.status = FlowStatus.ACTIVE.value
    else:
        flow.status = FlowStatus.PAUSED.value
        cancelled = queue_service.cancel_pending(db, flow_id=flow.id)
        enrollment_service.exit_active_enrollments(db, flow.id, PAUSE_EXIT_REASON)

    db.flush()
    return flow, cancelled


def apply_bulk_status(db: Session, flow_id: UUID, target: str) -> None:
    """Transition used by bulk updates: active/paused toggle or archive."""
    if target == FlowStatus.ARCHIVED.value:
        flow = require_flow(db, flow_id)
        _check_deletable(flow)
        if flow.status != FlowStatus.ARCHIVED.value:
            archive_flow(db, flow)
        return
    set_flow_status(db, flow_id, target)
