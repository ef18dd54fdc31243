"""Flow repository behaviour through the service boundary."""

import uuid

from mailflow.core.results import ErrorKind
from mailflow.db.enums import EnrollmentStatus, FlowStatus, QueueItemStatus
from mailflow.db.models import AutomationFlow, AutomationQueueItem
from mailflow.schemas.automation import DelayStep, EmailStep
from mailflow.services import flow_service


def test_create_flow_starts_as_draft(service, admin):
    result = service.create_flow(
        admin,
        {
            "name": "  Onboarding ",
            "trigger_type": "user_signup",
            "steps": [{"type": "email", "template_slug": "welcome", "subject": "Hi"}],
        },
    )
    assert result.ok
    flow = result.data
    assert flow.name == "Onboarding"
    assert flow.status == FlowStatus.DRAFT
    assert flow.created_by == admin.user_id
    assert flow.total_enrolled == 0
    assert flow.steps[0].template_slug == "welcome"


def test_create_flow_rejects_duplicate_live_name(service, admin, make_flow):
    make_flow("Welcome", activate=False)
    result = service.create_flow(admin, {"name": "Welcome"})
    assert not result.ok
    assert result.kind == ErrorKind.DUPLICATE_NAME
    assert result.error.field == "name"


def test_archived_name_can_be_reused(service, admin, make_flow):
    flow = make_flow("Welcome", activate=False)
    assert service.delete_flow(admin, flow.id).ok
    assert service.create_flow(admin, {"name": "Welcome"}).ok


def test_create_flow_validation_error_names_field(service, admin):
    result = service.create_flow(
        admin, {"name": "Bad", "steps": [{"type": "delay", "delay_minutes": -5}]}
    )
    assert not result.ok
    assert result.kind == ErrorKind.VALIDATION_ERROR
    assert result.error.field.startswith("steps.0")


def test_create_flow_rejects_unknown_step_type(service, admin):
    result = service.create_flow(admin, {"name": "Bad", "steps": [{"type": "sms"}]})
    assert result.kind == ErrorKind.VALIDATION_ERROR


def test_update_flow_excludes_self_from_name_check(service, admin, make_flow):
    flow = make_flow("Welcome", activate=False)
    result = service.update_flow(admin, flow.id, {"name": "Welcome", "description": "v2"})
    assert result.ok
    assert result.data.description == "v2"


def test_update_flow_duplicate_name(service, admin, make_flow):
    make_flow("Welcome", activate=False)
    other = make_flow("Re-engagement", activate=False)
    result = service.update_flow(admin, other.id, {"name": "Welcome"})
    assert result.kind == ErrorKind.DUPLICATE_NAME


def test_update_archived_flow_rejected(service, admin, make_flow):
    flow = make_flow("Welcome", activate=False)
    service.delete_flow(admin, flow.id)
    result = service.update_flow(admin, flow.id, {"description": "nope"})
    assert result.kind == ErrorKind.ARCHIVED


def test_update_active_flow_cannot_drop_all_emails(service, admin, make_flow):
    flow = make_flow("Welcome")
    result = service.update_flow(
        admin, flow.id, {"steps": [{"type": "delay", "delay_minutes": 10}]}
    )
    assert result.kind == ErrorKind.NO_EMAIL_STEP


def test_update_cannot_move_steps_with_scheduled_emails(service, admin, make_flow, profile_id):
    flow = make_flow("Welcome")
    service.enroll(admin, flow.id, profile_id)

    result = service.update_flow(
        admin,
        flow.id,
        {
            "steps": [
                {"type": "delay", "delay_minutes": 5},
                {"type": "email", "template_slug": "other", "subject": "Other"},
            ]
        },
    )

    assert result.kind == ErrorKind.VALIDATION_ERROR
    assert result.error.field == "steps"
    assert [s.template_slug for s in service.get_flow(admin, flow.id).data.steps[::2]] == [
        "welcome",
        "tips",
    ]


def test_update_can_append_after_scheduled_steps(service, admin, make_flow, profile_id):
    flow = make_flow("Welcome")
    service.enroll(admin, flow.id, profile_id)
    steps = [s.model_dump(mode="json") for s in flow.steps]

    result = service.update_flow(
        admin,
        flow.id,
        {"steps": steps + [{"type": "email", "template_slug": "later", "subject": "Later"}]},
    )

    assert result.ok
    assert len(result.data.steps) == 4


def test_update_steps_free_once_items_resolved(service, admin, make_flow, profile_id):
    flow = make_flow("Welcome")
    enrollment = service.enroll(admin, flow.id, profile_id).data
    service.exit_enrollment(admin, enrollment.id)

    result = service.update_flow(
        admin,
        flow.id,
        {"steps": [{"type": "email", "template_slug": "fresh", "subject": "Fresh"}]},
    )

    assert result.ok


def test_update_missing_flow(service, admin):
    result = service.update_flow(admin, uuid.uuid4(), {"description": "x"})
    assert result.kind == ErrorKind.NOT_FOUND


def test_activation_requires_steps_and_email(service, admin, make_flow):
    empty = make_flow("Empty", steps=[], activate=False)
    result = service.toggle_flow_status(admin, empty.id, "active")
    assert result.kind == ErrorKind.NO_STEPS

    delays = make_flow(
        "Delays", steps=[DelayStep(delay_minutes=10), DelayStep(delay_minutes=20)], activate=False
    )
    result = service.toggle_flow_status(admin, delays.id, "active")
    assert result.kind == ErrorKind.NO_EMAIL_STEP

    good = make_flow("Good", steps=[EmailStep(template_slug="w", subject="s")], activate=False)
    result = service.toggle_flow_status(admin, good.id, "active")
    assert result.ok
    assert result.data.status == FlowStatus.ACTIVE


def test_toggle_rejects_other_statuses(service, admin, make_flow):
    flow = make_flow("Welcome", activate=False)
    result = service.toggle_flow_status(admin, flow.id, "archived")
    assert result.kind == ErrorKind.INVALID_STATUS


def test_toggle_archived_flow_rejected(service, admin, make_flow):
    flow = make_flow("Welcome", activate=False)
    service.delete_flow(admin, flow.id)
    result = service.toggle_flow_status(admin, flow.id, "active")
    assert result.kind == ErrorKind.ARCHIVED


def test_pause_cancels_only_pending_items(db, service, admin, make_flow, profile_id):
    flow = make_flow("Welcome")
    enrollment = service.enroll(admin, flow.id, profile_id).data

    items = (
        db.query(AutomationQueueItem)
        .filter(AutomationQueueItem.enrollment_id == enrollment.id)
        .order_by(AutomationQueueItem.step_index)
        .all()
    )
    assert len(items) == 2
    items[0].status = QueueItemStatus.SENT.value
    db.commit()

    result = service.toggle_flow_status(admin, flow.id, "paused")
    assert result.ok

    statuses = {
        item.step_index: item.status
        for item in db.query(AutomationQueueItem).filter(AutomationQueueItem.flow_id == flow.id)
    }
    assert statuses == {0: QueueItemStatus.SENT.value, 2: QueueItemStatus.CANCELLED.value}

    reactivated = service.toggle_flow_status(admin, flow.id, "active")
    assert reactivated.ok
    pending = (
        db.query(AutomationQueueItem)
        .filter(
            AutomationQueueItem.flow_id == flow.id,
            AutomationQueueItem.status == QueueItemStatus.PENDING.value,
        )
        .count()
    )
    assert pending == 0


def test_pause_exits_active_enrollments(service, admin, make_flow, profile_id):
    flow = make_flow("Welcome")
    enrollment = service.enroll(admin, flow.id, profile_id).data
    service.toggle_flow_status(admin, flow.id, "paused")

    enrollments = service.list_enrollments(admin, flow.id).data
    assert [e.id for e in enrollments] == [enrollment.id]
    assert enrollments[0].status == EnrollmentStatus.EXITED
    assert enrollments[0].exit_reason == flow_service.PAUSE_EXIT_REASON


def test_delete_active_flow_with_enrollments_blocked(service, admin, make_flow, profile_id):
    flow = make_flow("Welcome")
    assert service.enroll(admin, flow.id, profile_id).ok

    result = service.delete_flow(admin, flow.id)
    assert result.kind == ErrorKind.HAS_ENROLLMENTS
    result = service.delete_flow(admin, flow.id, hard=True)
    assert result.kind == ErrorKind.HAS_ENROLLMENTS

    assert service.toggle_flow_status(admin, flow.id, "paused").ok
    result = service.delete_flow(admin, flow.id)
    assert result.ok
    assert service.get_flow(admin, flow.id).data.status == FlowStatus.ARCHIVED


def test_soft_delete_cancels_pending_items(db, service, admin, make_flow, profile_id):
    flow = make_flow("Welcome")
    service.enroll(admin, flow.id, profile_id)
    # Enrollment counter is the guard; a flow paused earlier can be archived directly
    db.get(AutomationFlow, flow.id).total_enrolled = 0
    db.commit()

    result = service.delete_flow(admin, flow.id)
    assert result.ok
    assert result.data["cancelled"] == 2
    statuses = {
        item.status
        for item in db.query(AutomationQueueItem).filter(AutomationQueueItem.flow_id == flow.id)
    }
    assert statuses == {QueueItemStatus.CANCELLED.value}


def test_hard_delete_removes_rows(db, service, admin, make_flow, profile_id):
    flow = make_flow("Welcome")
    service.enroll(admin, flow.id, profile_id)
    service.toggle_flow_status(admin, flow.id, "paused")

    result = service.delete_flow(admin, flow.id, hard=True)
    assert result.ok
    assert result.data["deleted"] is True
    assert db.get(AutomationFlow, flow.id) is None
    assert db.query(AutomationQueueItem).filter(AutomationQueueItem.flow_id == flow.id).count() == 0


def test_duplicate_names_increment(service, admin, make_flow):
    flow = make_flow("Welcome", activate=False)

    first = service.duplicate_flow(admin, flow.id)
    second = service.duplicate_flow(admin, flow.id)

    assert first.data.name == "Welcome (Copy)"
    assert second.data.name == "Welcome (Copy 2)"
    assert first.data.status == FlowStatus.DRAFT
    assert [s.model_dump() for s in second.data.steps] == [s.model_dump() for s in flow.steps]


def test_duplicate_of_active_flow_is_draft(service, admin, make_flow):
    flow = make_flow("Welcome")
    copy = service.duplicate_flow(admin, flow.id).data
    assert copy.status == FlowStatus.DRAFT
    assert copy.total_enrolled == 0


def test_duplicate_name_cap_is_internal_error(db, service, admin, make_flow):
    flow = make_flow("Welcome", activate=False)
    service.config = service.config.model_copy(update={"DUPLICATE_NAME_MAX_ATTEMPTS": 2})
    service.duplicate_flow(admin, flow.id)
    service.duplicate_flow(admin, flow.id)

    result = service.duplicate_flow(admin, flow.id)
    assert result.kind == ErrorKind.INTERNAL_ERROR


def test_duplicate_missing_flow(service, admin):
    assert service.duplicate_flow(admin, uuid.uuid4()).kind == ErrorKind.NOT_FOUND


def test_bulk_set_status_collects_failures(service, admin, make_flow):
    good = make_flow("Good", activate=False)
    empty = make_flow("Empty", steps=[], activate=False)
    missing = uuid.uuid4()

    result = service.bulk_set_status(
        admin, [str(good.id), str(empty.id), str(missing), "not-a-uuid"], "active"
    )
    assert result.ok
    assert result.data.updated == 1
    kinds = {f.id: f.kind for f in result.data.failed}
    assert kinds == {
        str(empty.id): ErrorKind.NO_STEPS.value,
        str(missing): ErrorKind.NOT_FOUND.value,
        "not-a-uuid": ErrorKind.INVALID_ID.value,
    }
    assert service.get_flow(admin, good.id).data.status == FlowStatus.ACTIVE


def test_bulk_archive(service, admin, make_flow):
    flows = [make_flow(f"Flow {i}", activate=False) for i in range(3)]
    result = service.bulk_set_status(admin, [f.id for f in flows], "archived")
    assert result.data.updated == 3
    listed = service.list_flows(admin).data
    assert listed == []


def test_bulk_set_status_limits(service, admin):
    assert service.bulk_set_status(admin, [], "paused").kind == ErrorKind.NO_IDS
    too_many = [str(uuid.uuid4()) for _ in range(51)]
    assert service.bulk_set_status(admin, too_many, "paused").kind == ErrorKind.TOO_MANY
    assert service.bulk_set_status(admin, [str(uuid.uuid4())], "draft").kind == ErrorKind.INVALID_STATUS


def test_list_flows_filters(service, admin, make_flow):
    make_flow("Draft", activate=False)
    make_flow("Active")
    archived = make_flow("Gone", activate=False)
    service.delete_flow(admin, archived.id)

    names = {f.name for f in service.list_flows(admin).data}
    assert names == {"Draft", "Active"}
    active = service.list_flows(admin, status="active").data
    assert [f.name for f in active] == ["Active"]
    everything = service.list_flows(admin, include_archived=True).data
    assert len(everything) == 3
    assert service.list_flows(admin, status="bogus").kind == ErrorKind.INVALID_STATUS


def test_setup_welcome_flow_is_reused(service, admin):
    first = service.setup_welcome_flow(admin, activate=True)
    assert first.ok
    assert first.data.name == "Welcome Series"
    assert first.data.status == FlowStatus.ACTIVE

    second = service.setup_welcome_flow(admin)
    assert second.data.id == first.data.id
