"""Automation service - the boundary every caller (HTTP, cron, CLI) goes through.

Each public method:
1. checks the principal (unauthorized / forbidden) before anything else
2. parses ids and payloads (invalid_id / validation_error)
3. runs the repository operation and commits once
4. records an audit entry and invalidates caches (failures swallowed)

and returns a Result. Nothing raises across this boundary.
"""

import logging
from typing import Any, Callable, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mailflow.core.config import Settings, settings as default_settings
from mailflow.core.error_tracking import report_exception
from mailflow.core.results import AutomationError, ErrorKind, Result
from mailflow.core.security import Principal
from mailflow.core.structured_logging import build_log_context
from mailflow.db.enums import AuditResourceType, AutomationAuditAction, FlowStatus
from mailflow.schemas.automation import (
    BulkFailure,
    BulkStatusResult,
    EnrollmentRead,
    FlowCreate,
    FlowRead,
    FlowUpdate,
    ProcessQueueResult,
    QueueBulkResult,
)
from mailflow.services import (
    automation_presets,
    enrollment_service,
    flow_service,
    insights_service,
    queue_processor,
    queue_service,
)
from mailflow.services.action_service import ActionRunner, WebhookActionRunner
from mailflow.services.audit_service import AuditSink, DatabaseAuditSink
from mailflow.services.cache_service import (
    FLOWS_TAG,
    QUEUE_TAG,
    CacheInvalidator,
    NullCacheInvalidator,
    flow_tag,
    get_cache_invalidator,
)
from mailflow.services.delivery_service import EmailDelivery, get_email_delivery
from mailflow.services.subject_service import SubjectDirectory, get_subject_directory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def parse_id(value: Any, field: str = "id") -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise AutomationError(ErrorKind.INVALID_ID, f"Invalid {field}", field) from None


def parse_payload(model: type[T], payload: T | dict | None) -> T:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload or {})
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise AutomationError(ErrorKind.VALIDATION_ERROR, first.get("msg", "Invalid input"), field) from None


class AutomationService:
    """Facade over flows, enrollments and the queue for one database session."""

    def __init__(
        self,
        db: Session,
        *,
        delivery: EmailDelivery,
        subjects: SubjectDirectory,
        actions: ActionRunner,
        audit: AuditSink | None = None,
        cache: CacheInvalidator | None = None,
        config: Settings | None = None,
    ):
        self.db = db
        self.delivery = delivery
        self.subjects = subjects
        self.actions = actions
        self.audit = audit or DatabaseAuditSink(db)
        self.cache = cache or NullCacheInvalidator()
        self.config = config or default_settings

    # =========================================================================
    # Boundary helpers
    # =========================================================================

    @staticmethod
    def _authorize(principal: Principal | None) -> Principal:
        if principal is None:
            raise AutomationError(ErrorKind.UNAUTHORIZED, "Authentication required")
        if not principal.is_admin:
            raise AutomationError(ErrorKind.FORBIDDEN, "Admin access required")
        return principal

    def _rollback(self) -> None:
        try:
            self.db.rollback()
        except Exception:
            logger.warning("Rollback failed", exc_info=True)

    def _failure(self, operation: str, exc: Exception) -> Result:
        self._rollback()
        if isinstance(exc, AutomationError):
            return Result.failure(exc.kind, exc.message, exc.field)
        context = build_log_context(operation=operation)
        report_exception(exc, context)
        if isinstance(exc, SQLAlchemyError):
            logger.error("Store error", exc_info=True, extra=context)
            return Result.failure(ErrorKind.STORE_ERROR, "A storage error occurred")
        logger.error("Unexpected error", exc_info=True, extra=context)
        return Result.failure(ErrorKind.INTERNAL_ERROR, "An unexpected error occurred")

    def _run(self, operation: str, principal: Principal | None, fn: Callable[[Principal], Any]) -> Result:
        try:
            actor = self._authorize(principal)
            return Result.success(fn(actor))
        except Exception as exc:
            return self._failure(operation, exc)

    def _audit(
        self,
        actor: Principal,
        action: AutomationAuditAction,
        resource_type: AuditResourceType,
        resource_id: Any,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            self.audit.record(
                actor.user_id, action.value, resource_type.value, resource_id, metadata
            )
        except Exception:
            logger.warning("Audit sink raised for %s", action.value, exc_info=True)

    def _invalidate(self, *tags: str) -> None:
        for tag in tags:
            try:
                self.cache.invalidate(tag)
            except Exception:
                logger.warning("Cache invalidator raised for %s", tag, exc_info=True)

    def _invalidate_flow(self, flow_id: Any = None, queue: bool = False) -> None:
        tags = [FLOWS_TAG]
        if flow_id is not None:
            tags.append(flow_tag(flow_id))
        if queue:
            tags.append(QUEUE_TAG)
        self._invalidate(*tags)

    # =========================================================================
    # Flows
    # =========================================================================

    def get_flow(self, principal: Principal | None, flow_id: Any) -> Result:
        def op(actor: Principal) -> FlowRead:
            flow = flow_service.require_flow(self.db, parse_id(flow_id))
            return FlowRead.model_validate(flow)

        return self._run("get_flow", principal, op)

    def list_flows(
        self,
        principal: Principal | None,
        status: str | None = None,
        include_archived: bool = False,
    ) -> Result:
        def op(actor: Principal) -> list[FlowRead]:
            status_filter = None
            if status:
                try:
                    status_filter = FlowStatus(status)
                except ValueError:
                    raise AutomationError(
                        ErrorKind.INVALID_STATUS, f"Unknown status '{status}'", "status"
                    ) from None
            flows = flow_service.list_flows(
                self.db, status=status_filter, include_archived=include_archived
            )
            return [FlowRead.model_validate(flow) for flow in flows]

        return self._run("list_flows", principal, op)

    def create_flow(self, principal: Principal | None, payload: FlowCreate | dict) -> Result:
        def op(actor: Principal) -> FlowRead:
            data = parse_payload(FlowCreate, payload)
            flow = flow_service.create_flow(self.db, data, created_by=actor.user_id)
            self.db.commit()
            read = FlowRead.model_validate(flow)
            self._audit(
                actor, AutomationAuditAction.CREATE, AuditResourceType.FLOW, flow.id,
                {"name": read.name, "steps": len(read.steps)},
            )
            self._invalidate_flow(flow.id)
            return read

        return self._run("create_flow", principal, op)

    def update_flow(
        self, principal: Principal | None, flow_id: Any, patch: FlowUpdate | dict
    ) -> Result:
        def op(actor: Principal) -> FlowRead:
            fid = parse_id(flow_id)
            data = parse_payload(FlowUpdate, patch)
            flow = flow_service.update_flow(self.db, fid, data)
            self.db.commit()
            read = FlowRead.model_validate(flow)
            self._audit(
                actor, AutomationAuditAction.UPDATE, AuditResourceType.FLOW, fid,
                {"fields": sorted(data.model_fields_set)},
            )
            self._invalidate_flow(fid)
            return read

        return self._run("update_flow", principal, op)

    def delete_flow(self, principal: Principal | None, flow_id: Any, hard: bool = False) -> Result:
        def op(actor: Principal) -> dict:
            fid = parse_id(flow_id)
            outcome = flow_service.delete_flow(self.db, fid, hard=hard)
            self.db.commit()
            action = AutomationAuditAction.HARD_DELETE if hard else AutomationAuditAction.ARCHIVE
            self._audit(
                actor, action, AuditResourceType.FLOW, fid,
                {"cancelled_items": outcome["cancelled"]},
            )
            self._invalidate_flow(fid, queue=True)
            return outcome

        return self._run("delete_flow", principal, op)

    def duplicate_flow(self, principal: Principal | None, flow_id: Any) -> Result:
        def op(actor: Principal) -> FlowRead:
            fid = parse_id(flow_id)
            copy = flow_service.duplicate_flow(
                self.db,
                fid,
                created_by=actor.user_id,
                max_name_attempts=self.config.DUPLICATE_NAME_MAX_ATTEMPTS,
            )
            self.db.commit()
            read = FlowRead.model_validate(copy)
            self._audit(
                actor, AutomationAuditAction.DUPLICATE, AuditResourceType.FLOW, copy.id,
                {"source_id": str(fid), "name": read.name},
            )
            self._invalidate_flow(copy.id)
            return read

        return self._run("duplicate_flow", principal, op)

    def toggle_flow_status(self, principal: Principal | None, flow_id: Any, status: str) -> Result:
        def op(actor: Principal) -> FlowRead:
            fid = parse_id(flow_id)
            flow, cancelled = flow_service.set_flow_status(self.db, fid, status)
            self.db.commit()
            read = FlowRead.model_validate(flow)
            action = (
                AutomationAuditAction.ACTIVATE
                if read.status == FlowStatus.ACTIVE
                else AutomationAuditAction.PAUSE
            )
            self._audit(
                actor, action, AuditResourceType.FLOW, fid, {"cancelled_items": cancelled}
            )
            self._invalidate_flow(fid, queue=bool(cancelled))
            return read

        return self._run("toggle_flow_status", principal, op)

    def bulk_set_status(self, principal: Principal | None, ids: list[Any], status: str) -> Result:
        def op(actor: Principal) -> BulkStatusResult:
            if status not in {s.value for s in (FlowStatus.ACTIVE, FlowStatus.PAUSED, FlowStatus.ARCHIVED)}:
                raise AutomationError(
                    ErrorKind.INVALID_STATUS,
                    "Status must be 'active', 'paused' or 'archived'",
                    "status",
                )
            if not ids:
                raise AutomationError(ErrorKind.NO_IDS, "No automation ids provided", "ids")
            if len(ids) > self.config.BULK_MAX_IDS:
                raise AutomationError(
                    ErrorKind.TOO_MANY,
                    f"At most {self.config.BULK_MAX_IDS} automations per request",
                    "ids",
                )

            updated: list[str] = []
            failed: list[BulkFailure] = []
            for raw_id in ids:
                try:
                    fid = parse_id(raw_id)
                    flow_service.apply_bulk_status(self.db, fid, status)
                    updated.append(str(fid))
                except AutomationError as exc:
                    failed.append(BulkFailure(id=str(raw_id), kind=exc.kind.value, message=exc.message))
            self.db.commit()

            self._audit(
                actor, AutomationAuditAction.BULK_UPDATE_STATUS, AuditResourceType.FLOW, None,
                {"status": status, "ids": updated, "failed": len(failed)},
            )
            self._invalidate(FLOWS_TAG, QUEUE_TAG, *(flow_tag(fid) for fid in updated))
            return BulkStatusResult(updated=len(updated), failed=failed)

        return self._run("bulk_set_status", principal, op)

    def setup_welcome_flow(self, principal: Principal | None, activate: bool = False) -> Result:
        def op(actor: Principal) -> FlowRead:
            flow, created = automation_presets.setup_welcome_flow(
                self.db, created_by=actor.user_id, activate=activate
            )
            self.db.commit()
            read = FlowRead.model_validate(flow)
            self._audit(
                actor, AutomationAuditAction.SETUP_WELCOME_FLOW, AuditResourceType.FLOW, flow.id,
                {"created": created, "activated": read.status == FlowStatus.ACTIVE},
            )
            self._invalidate_flow(flow.id)
            return read

        return self._run("setup_welcome_flow", principal, op)

    def get_insights(self, principal: Principal | None, flow_id: Any) -> Result:
        def op(actor: Principal):
            flow = flow_service.require_flow(self.db, parse_id(flow_id))
            return insights_service.get_flow_insights(self.db, flow)

        return self._run("get_insights", principal, op)

    # =========================================================================
    # Enrollments
    # =========================================================================

    def enroll(self, principal: Principal | None, flow_id: Any, subject_id: Any) -> Result:
        def op(actor: Principal) -> EnrollmentRead:
            fid = parse_id(flow_id, "flow_id")
            pid = parse_id(subject_id, "profile_id")
            enrollment, outcome = enrollment_service.enroll(
                self.db,
                fid,
                pid,
                subjects=self.subjects,
                actions=self.actions,
                max_attempts=self.config.QUEUE_MAX_ATTEMPTS,
            )
            self.db.commit()
            read = EnrollmentRead.model_validate(enrollment)
            self._audit(
                actor, AutomationAuditAction.ENROLL, AuditResourceType.ENROLLMENT, read.id,
                {"flow_id": str(fid), "scheduled": len(outcome.items)},
            )
            self._invalidate_flow(fid, queue=True)
            return read

        return self._run("enroll", principal, op)

    def exit_enrollment(
        self, principal: Principal | None, enrollment_id: Any, reason: str | None = None
    ) -> Result:
        def op(actor: Principal) -> EnrollmentRead:
            eid = parse_id(enrollment_id, "enrollment_id")
            enrollment, cancelled = enrollment_service.exit_enrollment(self.db, eid, reason)
            self.db.commit()
            read = EnrollmentRead.model_validate(enrollment)
            self._audit(
                actor, AutomationAuditAction.EXIT, AuditResourceType.ENROLLMENT, eid,
                {"flow_id": str(read.flow_id), "cancelled_items": cancelled},
            )
            self._invalidate_flow(read.flow_id, queue=True)
            return read

        return self._run("exit_enrollment", principal, op)

    def record_conversion(self, principal: Principal | None, enrollment_id: Any) -> Result:
        def op(actor: Principal) -> EnrollmentRead:
            eid = parse_id(enrollment_id, "enrollment_id")
            enrollment = enrollment_service.record_conversion(self.db, eid)
            self.db.commit()
            read = EnrollmentRead.model_validate(enrollment)
            self._audit(
                actor, AutomationAuditAction.CONVERT, AuditResourceType.ENROLLMENT, eid,
                {"flow_id": str(read.flow_id)},
            )
            self._invalidate_flow(read.flow_id)
            return read

        return self._run("record_conversion", principal, op)

    def list_enrollments(
        self, principal: Principal | None, flow_id: Any, limit: int = 100
    ) -> Result:
        def op(actor: Principal) -> list[EnrollmentRead]:
            fid = parse_id(flow_id, "flow_id")
            flow_service.require_flow(self.db, fid)
            return [
                EnrollmentRead.model_validate(e)
                for e in enrollment_service.list_enrollments(self.db, fid, limit=limit)
            ]

        return self._run("list_enrollments", principal, op)

    # =========================================================================
    # Queue
    # =========================================================================

    async def process_queue(
        self,
        principal: Principal | None,
        limit: int | None = None,
        dry_run: bool = False,
    ) -> Result:
        operation = "process_queue"
        try:
            actor = self._authorize(principal)
            batch = limit or self.config.QUEUE_BATCH_SIZE
            if dry_run:
                due = queue_service.count_due(self.db)
                return Result.success(ProcessQueueResult(processed=0, failed=0, due=due))

            outcome = await queue_processor.process_queue(self.db, self.delivery, limit=batch)
            if actor.user_id is not None:
                self._audit(
                    actor, AutomationAuditAction.MANUAL_QUEUE_PROCESS, AuditResourceType.QUEUE,
                    None, outcome.as_dict(),
                )
            if outcome.processed or outcome.failed:
                self._invalidate(QUEUE_TAG)
            return Result.success(
                ProcessQueueResult(processed=outcome.processed, failed=outcome.failed)
            )
        except Exception as exc:
            return self._failure(operation, exc)

    def cancel_pending(self, principal: Principal | None, flow_id: Any = None) -> Result:
        def op(actor: Principal) -> QueueBulkResult:
            fid = parse_id(flow_id, "flow_id") if flow_id is not None else None
            count = queue_service.cancel_pending(self.db, flow_id=fid)
            self.db.commit()
            self._audit(
                actor, AutomationAuditAction.CANCEL_PENDING_EMAILS, AuditResourceType.QUEUE,
                fid, {"count": count},
            )
            self._invalidate(QUEUE_TAG)
            return QueueBulkResult(count=count)

        return self._run("cancel_pending", principal, op)

    def retry_failed(self, principal: Principal | None, flow_id: Any = None) -> Result:
        def op(actor: Principal) -> QueueBulkResult:
            fid = parse_id(flow_id, "flow_id") if flow_id is not None else None
            count = queue_service.retry_failed(self.db, flow_id=fid)
            self.db.commit()
            self._audit(
                actor, AutomationAuditAction.RETRY_FAILED_EMAILS, AuditResourceType.QUEUE,
                fid, {"count": count},
            )
            self._invalidate(QUEUE_TAG)
            return QueueBulkResult(count=count)

        return self._run("retry_failed", principal, op)

    def get_queue_status(self, principal: Principal | None, flow_id: Any = None) -> Result:
        def op(actor: Principal):
            fid = parse_id(flow_id, "flow_id") if flow_id is not None else None
            return queue_service.get_queue_status(self.db, flow_id=fid)

        return self._run("get_queue_status", principal, op)


def build_automation_service(db: Session) -> AutomationService:
    """Wire the service with collaborators from settings."""
    return AutomationService(
        db,
        delivery=get_email_delivery(),
        subjects=get_subject_directory(),
        actions=WebhookActionRunner(),
        audit=DatabaseAuditSink(db),
        cache=get_cache_invalidator(),
    )
