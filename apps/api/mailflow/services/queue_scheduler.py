"""Queue scheduler - materialize an enrollment's steps into queue items.

Scheduling is eager: one walk at enroll time produces every email item with
its absolute send time (enrolled_at + cumulative delays). A false condition
ends the walk; nothing after it is scheduled, and emails queued before it
still go out unless the enrollment is exited.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from mailflow.core.structured_logging import build_log_context
from mailflow.db.base import utcnow
from mailflow.db.enums import ConditionOperator, QueueItemStatus
from mailflow.db.models import AutomationEnrollment, AutomationFlow, AutomationQueueItem
from mailflow.schemas.automation import (
    ActionStep,
    ConditionStep,
    DelayStep,
    EmailStep,
    StepCondition,
    parse_steps,
)
from mailflow.services.action_service import ActionRunner
from mailflow.services.subject_service import SubjectDirectory

logger = logging.getLogger(__name__)

# Subject attributes forwarded to the delivery service as template variables
TEMPLATE_VARIABLE_FIELDS = ("first_name", "last_name", "nickname", "display_name", "locale")


@dataclass
class ScheduleOutcome:
    items: list[AutomationQueueItem] = field(default_factory=list)
    # True when the walk ended on a false condition
    short_circuited: bool = False

    @property
    def finished(self) -> bool:
        """
        Nothing left to deliver: the enrollment can complete now.

        A short-circuit that already queued emails is not finished; the
        enrollment stays active (and exitable) until those items resolve.
        """
        return not self.items


# =============================================================================
# Condition evaluation
# =============================================================================


def _normalize_list_value(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(value).strip()] if str(value).strip() else []


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=utcnow().tzinfo)
    return parsed


def _normalize_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value).strip().lower()


def evaluate_condition(
    condition: StepCondition,
    attributes: dict[str, Any],
    now: datetime | None = None,
) -> bool:
    """
    Evaluate a condition against subject attributes.

    older_than / newer_than take a number of days and compare it with the age
    of a timestamp attribute. Missing or unparseable values never match an
    ordering operator.
    """
    operator = condition.operator
    actual = attributes.get(condition.field)
    expected = condition.value

    if operator == ConditionOperator.EQUALS:
        return _normalize_scalar(actual) == _normalize_scalar(expected)

    if operator == ConditionOperator.NOT_EQUALS:
        return _normalize_scalar(actual) != _normalize_scalar(expected)

    if operator == ConditionOperator.CONTAINS:
        return _normalize_scalar(expected) in _normalize_scalar(actual)

    if operator == ConditionOperator.IS_EMPTY:
        return actual is None or actual == "" or actual == []

    if operator == ConditionOperator.IS_NOT_EMPTY:
        return not (actual is None or actual == "" or actual == [])

    if operator == ConditionOperator.IN:
        values = [v.lower() for v in _normalize_list_value(expected)]
        return bool(values) and _normalize_scalar(actual) in values

    if operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator == ConditionOperator.GREATER_THAN else left < right

    if operator in (ConditionOperator.OLDER_THAN, ConditionOperator.NEWER_THAN):
        moment, days = _as_datetime(actual), _as_number(expected)
        if moment is None or days is None:
            return False
        threshold = (now or utcnow()) - timedelta(days=days)
        if operator == ConditionOperator.OLDER_THAN:
            return moment < threshold
        return moment > threshold

    return False


# =============================================================================
# Scheduling
# =============================================================================


def _template_variables(attributes: dict[str, Any]) -> dict[str, Any]:
    return {key: attributes[key] for key in TEMPLATE_VARIABLE_FIELDS if key in attributes}


def schedule_enrollment(
    db: Session,
    enrollment: AutomationEnrollment,
    flow: AutomationFlow,
    *,
    subjects: SubjectDirectory,
    actions: ActionRunner,
    max_attempts: int = 3,
    now: datetime | None = None,
) -> ScheduleOutcome:
    """
    Walk the flow from the enrollment's step pointer and persist queue items.

    Advances ``enrollment.current_step`` past every walked step. Does not
    commit and does not change the enrollment's status; the caller completes
    the enrollment when the outcome is finished.
    """
    steps = parse_steps(flow.steps)
    attributes = subjects.get_attributes(enrollment.profile_id)
    log_context = build_log_context(flow_id=flow.id, enrollment_id=enrollment.id)

    outcome = ScheduleOutcome()
    clock = enrollment.enrolled_at
    index = enrollment.current_step

    while index < len(steps):
        step = steps[index]

        if isinstance(step, DelayStep):
            clock = clock + timedelta(minutes=step.delay_minutes)

        elif isinstance(step, EmailStep):
            item = AutomationQueueItem(
                flow_id=flow.id,
                enrollment_id=enrollment.id,
                profile_id=enrollment.profile_id,
                step_index=index,
                template_slug=step.template_slug,
                subject=step.subject,
                recipient=attributes.get("email"),
                variables=_template_variables(attributes),
                status=QueueItemStatus.PENDING.value,
                scheduled_for=clock,
                attempts=0,
                max_attempts=max_attempts,
            )
            db.add(item)
            outcome.items.append(item)

        elif isinstance(step, ConditionStep):
            if not evaluate_condition(step.condition, attributes, now=now):
                logger.info(
                    "Condition step %s false, ending enrollment", index, extra=log_context
                )
                outcome.short_circuited = True
                index += 1
                break

        elif isinstance(step, ActionStep):
            try:
                actions.run(
                    step.action,
                    step.config,
                    {
                        "flow_id": str(flow.id),
                        "enrollment_id": str(enrollment.id),
                        "profile_id": str(enrollment.profile_id),
                        "step_index": index,
                    },
                )
            except Exception:
                logger.warning(
                    "Action step %s (%s) failed", index, step.action,
                    exc_info=True, extra=log_context,
                )

        index += 1

    enrollment.current_step = index
    db.flush()
    return outcome
