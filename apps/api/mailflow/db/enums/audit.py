"""Audit action names."""

from enum import Enum


class AutomationAuditAction(str, Enum):
    """Actions recorded for automation mutations."""

    CREATE = "create"
    UPDATE = "update"
    ARCHIVE = "archive"
    HARD_DELETE = "hard_delete"
    ACTIVATE = "activate"
    PAUSE = "pause"
    DUPLICATE = "duplicate"
    BULK_UPDATE_STATUS = "bulk_update_status"
    ENROLL = "enroll"
    EXIT = "exit"
    CONVERT = "convert"
    CANCEL_PENDING_EMAILS = "cancel_pending_emails"
    RETRY_FAILED_EMAILS = "retry_failed_emails"
    MANUAL_QUEUE_PROCESS = "manual_queue_process"
    SETUP_WELCOME_FLOW = "setup_welcome_flow"


class AuditResourceType(str, Enum):
    FLOW = "automation_flow"
    ENROLLMENT = "automation_enrollment"
    QUEUE = "automation_queue"
