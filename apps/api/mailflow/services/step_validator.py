"""Activation checks for a flow's step list."""

from mailflow.core.results import AutomationError, ErrorKind
from mailflow.db.enums import StepType


def activation_error(steps: list[dict]) -> AutomationError | None:
    """Return why a step list cannot be activated, or None if it can.

    Pure: no store or network access. Accepts stored (dict) steps.
    """
    if not steps:
        return AutomationError(ErrorKind.NO_STEPS, "Flow must have at least one step", "steps")
    if not any(step.get("type") == StepType.EMAIL.value for step in steps):
        return AutomationError(
            ErrorKind.NO_EMAIL_STEP, "Flow must have at least one email step", "steps"
        )
    return None


def validate_for_activation(steps: list[dict]) -> None:
    """Raise AutomationError if the steps cannot be activated."""
    error = activation_error(steps)
    if error is not None:
        raise error
