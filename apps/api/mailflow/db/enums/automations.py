"""Automation-related enums."""

from enum import Enum


class FlowStatus(str, Enum):
    """Lifecycle status of an automation flow."""

    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class EnrollmentStatus(str, Enum):
    """Status of one subject's traversal of a flow."""

    ACTIVE = "active"
    COMPLETED = "completed"
    EXITED = "exited"


class QueueItemStatus(str, Enum):
    """Status of a scheduled automation email."""

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepType(str, Enum):
    EMAIL = "email"
    DELAY = "delay"
    CONDITION = "condition"
    ACTION = "action"


class ConditionOperator(str, Enum):
    """Operators for condition steps."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    OLDER_THAN = "older_than"  # value in days, field holds a timestamp
    NEWER_THAN = "newer_than"
    CONTAINS = "contains"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IN = "in"


class TriggerType(str, Enum):
    """Trigger tags stored on a flow (evaluated outside this service)."""

    USER_SIGNUP = "user_signup"
    FIRST_LISTING = "first_listing"
    INACTIVITY = "inactivity"
    LISTING_EXPIRED = "listing_expired"
    MANUAL = "manual"
    SCHEDULED = "scheduled"
