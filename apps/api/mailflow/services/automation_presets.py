"""Preset flows that can be seeded by admins."""

from uuid import UUID

from sqlalchemy.orm import Session

from mailflow.db.enums import FlowStatus, TriggerType
from mailflow.db.models import AutomationFlow
from mailflow.schemas.automation import DelayStep, EmailStep, FlowCreate
from mailflow.services import flow_service

WELCOME_FLOW_NAME = "Welcome Series"

WELCOME_FLOW_STEPS = [
    EmailStep(template_slug="welcome", subject="Welcome to the community!"),
    DelayStep(delay_minutes=2 * 24 * 60),
    EmailStep(template_slug="getting-started", subject="Getting started: share your first food"),
    DelayStep(delay_minutes=3 * 24 * 60),
    EmailStep(template_slug="first-share-tips", subject="Tips for a great first share"),
]


def setup_welcome_flow(
    db: Session, created_by: UUID | None = None, activate: bool = False
) -> tuple[AutomationFlow, bool]:
    """
    Create the welcome series for new signups, or reuse the live one.

    Returns (flow, created). Does not commit.
    """
    flow = flow_service.find_live_flow_by_name(db, WELCOME_FLOW_NAME)
    created = False
    if flow is None:
        flow = flow_service.create_flow(
            db,
            FlowCreate(
                name=WELCOME_FLOW_NAME,
                description="Onboarding emails sent over the first week after signup",
                trigger_type=TriggerType.USER_SIGNUP.value,
                trigger_config={},
                steps=WELCOME_FLOW_STEPS,
            ),
            created_by=created_by,
        )
        created = True

    if activate and flow.status != FlowStatus.ACTIVE.value:
        flow_service.set_flow_status(db, flow.id, FlowStatus.ACTIVE.value)
    return flow, created
