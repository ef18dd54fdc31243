from datetime import datetime, timedelta, timezone

import pytest

from mailflow.db.enums import ConditionOperator, EnrollmentStatus, QueueItemStatus
from mailflow.db.models import AutomationEnrollment, AutomationQueueItem
from mailflow.schemas.automation import (
    ActionStep,
    ConditionStep,
    DelayStep,
    EmailStep,
    StepCondition,
)
from mailflow.services import queue_processor
from mailflow.services.queue_scheduler import evaluate_condition


def _items(db, enrollment_id):
    return (
        db.query(AutomationQueueItem)
        .filter(AutomationQueueItem.enrollment_id == enrollment_id)
        .order_by(AutomationQueueItem.step_index)
        .all()
    )


def test_enroll_schedules_whole_sequence(db, service, admin, make_flow, profile_id):
    flow = make_flow("Welcome")

    enrollment = service.enroll(admin, flow.id, profile_id).data
    items = _items(db, enrollment.id)

    assert [item.template_slug for item in items] == ["welcome", "tips"]
    first, second = items
    assert first.scheduled_for == enrollment.enrolled_at
    assert second.scheduled_for == enrollment.enrolled_at + timedelta(minutes=2880)
    assert all(item.status == QueueItemStatus.PENDING.value for item in items)
    assert all(item.attempts == 0 and item.max_attempts == 3 for item in items)
    assert first.recipient == "subject@example.com"
    assert first.variables == {"first_name": "Sam"}
    assert enrollment.current_step == 3
    assert enrollment.status == EnrollmentStatus.ACTIVE


def test_delays_accumulate(db, service, admin, make_flow, profile_id):
    flow = make_flow(
        "Drip",
        steps=[
            DelayStep(delay_minutes=60),
            EmailStep(template_slug="a", subject="A"),
            DelayStep(delay_minutes=30),
            DelayStep(delay_minutes=30),
            EmailStep(template_slug="b", subject="B"),
            EmailStep(template_slug="c", subject="C"),
        ],
    )
    enrollment = service.enroll(admin, flow.id, profile_id).data
    offsets = [
        (item.scheduled_for - enrollment.enrolled_at) for item in _items(db, enrollment.id)
    ]
    assert offsets == [timedelta(minutes=60), timedelta(minutes=120), timedelta(minutes=120)]


LISTER_STEPS = [
    EmailStep(template_slug="hello", subject="Hello"),
    ConditionStep(
        condition=StepCondition(field="has_listings", operator="equals", value=True)
    ),
    EmailStep(template_slug="listing-tips", subject="Tips"),
]


def test_false_condition_short_circuits(db, service, admin, make_flow, profile_id):
    flow = make_flow("Listers", steps=LISTER_STEPS)

    enrollment = service.enroll(admin, flow.id, profile_id).data

    assert [item.template_slug for item in _items(db, enrollment.id)] == ["hello"]
    assert enrollment.current_step == 2
    # Still active until the email queued before the condition resolves
    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert service.get_flow(admin, flow.id).data.total_completed == 0


@pytest.mark.asyncio
async def test_short_circuited_enrollment_completes_after_last_send(
    db, service, admin, make_flow, profile_id, fake_delivery
):
    flow = make_flow("Listers", steps=LISTER_STEPS)
    enrollment = service.enroll(admin, flow.id, profile_id).data

    await queue_processor.process_queue(db, fake_delivery)

    row = db.get(AutomationEnrollment, enrollment.id)
    db.refresh(row)
    assert [s["template"] for s in fake_delivery.sent] == ["hello"]
    assert row.status == EnrollmentStatus.COMPLETED.value
    assert service.get_flow(admin, flow.id).data.total_completed == 1


@pytest.mark.asyncio
async def test_exiting_short_circuited_enrollment_cancels_queued_email(
    db, service, admin, make_flow, profile_id, fake_delivery
):
    flow = make_flow("Listers", steps=LISTER_STEPS)
    enrollment = service.enroll(admin, flow.id, profile_id).data

    exited = service.exit_enrollment(admin, enrollment.id, "Unsubscribed")
    outcome = await queue_processor.process_queue(db, fake_delivery)

    assert exited.data.status == EnrollmentStatus.EXITED
    items = _items(db, enrollment.id)
    for item in items:
        db.refresh(item)
    assert [item.status for item in items] == [QueueItemStatus.CANCELLED.value]
    assert outcome.processed == 0
    assert fake_delivery.sent == []


def test_true_condition_continues(db, service, admin, make_flow, profile_id):
    flow = make_flow(
        "Sharers",
        steps=[
            ConditionStep(
                condition=StepCondition(field="total_shares", operator="greater_than", value=2)
            ),
            EmailStep(template_slug="thanks", subject="Thanks"),
        ],
    )
    enrollment = service.enroll(admin, flow.id, profile_id).data
    assert [item.template_slug for item in _items(db, enrollment.id)] == ["thanks"]
    assert enrollment.status == EnrollmentStatus.ACTIVE


def test_condition_before_any_email_completes_immediately(db, service, admin, make_flow, profile_id):
    flow = make_flow(
        "Nobody",
        steps=[
            ConditionStep(condition=StepCondition(field="missing", operator="is_not_empty")),
            EmailStep(template_slug="never", subject="Never"),
        ],
    )
    enrollment = service.enroll(admin, flow.id, profile_id).data
    assert _items(db, enrollment.id) == []
    assert enrollment.status == EnrollmentStatus.COMPLETED
    assert enrollment.completed_at is not None


def test_action_step_runs_and_failure_does_not_block(
    db, service, admin, make_flow, profile_id, fake_actions
):
    fake_actions.error = RuntimeError("webhook down")
    flow = make_flow(
        "Hooked",
        steps=[
            ActionStep(action="webhook", config={"url": "https://hooks.example.com/x"}),
            EmailStep(template_slug="after", subject="After"),
        ],
    )

    enrollment = service.enroll(admin, flow.id, profile_id)

    assert enrollment.ok
    assert len(fake_actions.calls) == 1
    action, config, context = fake_actions.calls[0]
    assert action == "webhook"
    assert context["profile_id"] == str(profile_id)
    assert [item.template_slug for item in _items(db, enrollment.data.id)] == ["after"]


NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "operator,field_value,expected_value,result",
    [
        (ConditionOperator.EQUALS, "Gold", "gold", True),
        (ConditionOperator.EQUALS, True, "true", True),
        (ConditionOperator.NOT_EQUALS, "a", "b", True),
        (ConditionOperator.GREATER_THAN, 5, "3", True),
        (ConditionOperator.GREATER_THAN, "n/a", 3, False),
        (ConditionOperator.LESS_THAN, 1, 3, True),
        (ConditionOperator.CONTAINS, "vegan, gluten-free", "vegan", True),
        (ConditionOperator.IN, "fr", "en, fr", True),
        (ConditionOperator.IN, "de", [], False),
        (ConditionOperator.IS_EMPTY, None, None, True),
        (ConditionOperator.IS_NOT_EMPTY, "", None, False),
        (ConditionOperator.OLDER_THAN, (NOW - timedelta(days=10)).isoformat(), 7, True),
        (ConditionOperator.OLDER_THAN, (NOW - timedelta(days=3)).isoformat(), 7, False),
        (ConditionOperator.NEWER_THAN, NOW - timedelta(days=3), 7, True),
        (ConditionOperator.NEWER_THAN, "garbage", 7, False),
    ],
)
def test_evaluate_condition(operator, field_value, expected_value, result):
    condition = StepCondition(field="f", operator=operator, value=expected_value)
    assert evaluate_condition(condition, {"f": field_value}, now=NOW) is result
