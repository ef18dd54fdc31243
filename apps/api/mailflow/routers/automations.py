"""Automations router - flows, enrollments and the delivery queue (admin only).

Request bodies are taken as plain dicts and path ids as strings so that the
service checks authorization before it validates anything.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from mailflow.core.deps import get_automation_service, get_principal, require_csrf_header
from mailflow.core.results import ErrorKind, Result
from mailflow.core.security import Principal
from mailflow.schemas.automation import (
    BulkStatusResult,
    EnrollmentRead,
    FlowInsights,
    FlowRead,
    ProcessQueueRequest,
    ProcessQueueResult,
    QueueBulkResult,
    QueueStatus,
)
from mailflow.services.automation_service import AutomationService


router = APIRouter(tags=["Automations"])

ERROR_STATUS_CODES = {
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_ID: 400,
    ErrorKind.INVALID_STATUS: 400,
    ErrorKind.TOO_MANY: 400,
    ErrorKind.NO_IDS: 400,
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.NO_STEPS: 422,
    ErrorKind.NO_EMAIL_STEP: 422,
    ErrorKind.DUPLICATE_NAME: 409,
    ErrorKind.ARCHIVED: 409,
    ErrorKind.HAS_ENROLLMENTS: 409,
    ErrorKind.ALREADY_ENROLLED: 409,
    ErrorKind.NOT_ACTIVE: 409,
    ErrorKind.STORE_ERROR: 503,
    ErrorKind.INTERNAL_ERROR: 500,
}


def unwrap(result: Result) -> Any:
    """Return the result's data or raise the matching HTTP error."""
    if result.ok:
        return result.data
    raise HTTPException(
        status_code=ERROR_STATUS_CODES.get(result.error.kind, 500),
        detail=result.error.to_dict(),
    )


# =============================================================================
# Queue (declared before /{flow_id} routes)
# =============================================================================


@router.get("/queue/status", response_model=QueueStatus)
def get_queue_status(
    flow_id: str | None = Query(None),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
):
    """Counts of queue items per status and the next scheduled send."""
    return unwrap(service.get_queue_status(principal, flow_id))


@router.post("/queue/process", response_model=ProcessQueueResult)
async def process_queue(
    data: ProcessQueueRequest | None = None,
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    """Run one queue pass now (manual trigger)."""
    data = data or ProcessQueueRequest()
    return unwrap(await service.process_queue(principal, limit=data.limit, dry_run=data.dry_run))


@router.post("/queue/cancel-pending", response_model=QueueBulkResult)
def cancel_pending(
    flow_id: str | None = Query(None),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    return unwrap(service.cancel_pending(principal, flow_id))


@router.post("/queue/retry-failed", response_model=QueueBulkResult)
def retry_failed(
    flow_id: str | None = Query(None),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    return unwrap(service.retry_failed(principal, flow_id))


# =============================================================================
# Enrollments by id
# =============================================================================


@router.post("/enrollments/{enrollment_id}/exit", response_model=EnrollmentRead)
def exit_enrollment(
    enrollment_id: str,
    payload: dict | None = Body(None),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    """Exit an enrollment (idempotent) and cancel its pending emails."""
    reason = (payload or {}).get("reason")
    return unwrap(service.exit_enrollment(principal, enrollment_id, reason))


@router.post("/enrollments/{enrollment_id}/convert", response_model=EnrollmentRead)
def record_conversion(
    enrollment_id: str,
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    return unwrap(service.record_conversion(principal, enrollment_id))


# =============================================================================
# Flow CRUD
# =============================================================================


@router.get("", response_model=list[FlowRead])
def list_flows(
    status_filter: str | None = Query(None, alias="status", description="Filter by status"),
    include_archived: bool = Query(False),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
):
    return unwrap(service.list_flows(principal, status=status_filter, include_archived=include_archived))


@router.post("", response_model=FlowRead, status_code=status.HTTP_201_CREATED)
def create_flow(
    payload: dict | None = Body(None),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    """Create a new flow (draft status)."""
    return unwrap(service.create_flow(principal, payload or {}))


@router.post("/bulk-status", response_model=BulkStatusResult)
def bulk_set_status(
    payload: dict | None = Body(None),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    """Set status on up to BULK_MAX_IDS flows; per-id failures are reported, not raised."""
    payload = payload or {}
    ids = payload.get("ids")
    return unwrap(
        service.bulk_set_status(
            principal, ids if isinstance(ids, list) else [], str(payload.get("status", ""))
        )
    )


@router.post("/presets/welcome", response_model=FlowRead)
def setup_welcome_flow(
    activate: bool = Query(False),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    return unwrap(service.setup_welcome_flow(principal, activate=activate))


@router.get("/{flow_id}", response_model=FlowRead)
def get_flow(
    flow_id: str,
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
):
    return unwrap(service.get_flow(principal, flow_id))


@router.patch("/{flow_id}", response_model=FlowRead)
def update_flow(
    flow_id: str,
    payload: dict | None = Body(None),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    return unwrap(service.update_flow(principal, flow_id, payload or {}))


@router.delete("/{flow_id}")
def delete_flow(
    flow_id: str,
    hard: bool = Query(False, description="Remove the row instead of archiving"),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    return unwrap(service.delete_flow(principal, flow_id, hard=hard))


@router.post("/{flow_id}/duplicate", response_model=FlowRead, status_code=status.HTTP_201_CREATED)
def duplicate_flow(
    flow_id: str,
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    return unwrap(service.duplicate_flow(principal, flow_id))


@router.post("/{flow_id}/status", response_model=FlowRead)
def toggle_flow_status(
    flow_id: str,
    payload: dict | None = Body(None),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    """Activate (validates steps) or pause (cancels pending emails) a flow."""
    status_value = str((payload or {}).get("status", ""))
    return unwrap(service.toggle_flow_status(principal, flow_id, status_value))


@router.get("/{flow_id}/insights", response_model=FlowInsights)
def get_insights(
    flow_id: str,
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
):
    return unwrap(service.get_insights(principal, flow_id))


@router.get("/{flow_id}/enrollments", response_model=list[EnrollmentRead])
def list_enrollments(
    flow_id: str,
    limit: int = Query(100, ge=1, le=500),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
):
    return unwrap(service.list_enrollments(principal, flow_id, limit=limit))


@router.post(
    "/{flow_id}/enrollments",
    response_model=EnrollmentRead,
    status_code=status.HTTP_201_CREATED,
)
def enroll(
    flow_id: str,
    payload: dict | None = Body(None),
    principal: Principal | None = Depends(get_principal),
    service: AutomationService = Depends(get_automation_service),
    _csrf=Depends(require_csrf_header),
):
    """Enroll a subject into an active flow and schedule its emails."""
    return unwrap(service.enroll(principal, flow_id, (payload or {}).get("profile_id")))
