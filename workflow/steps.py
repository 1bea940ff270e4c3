"""
Step transitions over an explicit session.

GOVERNANCE:
- The only hard guard is that a patient is selected before leaving step 0
- Per-step content checks are advisory (step_warnings), never guards
- A failed guard leaves the session untouched
"""

from datetime import datetime
from typing import Any, Optional

from api.models.session import (
    LAST_STEP_INDEX,
    REQUIRED_STEPS,
    STEP_ORDER,
    STEP_TITLES,
    MTRSession,
    StepName,
    StepState,
)
from workflow.errors import ValidationError

STEP_PENDING = "pending"
STEP_ACTIVE = "active"
STEP_COMPLETED = "completed"


def new_session(patient_id: str, **fields: Any) -> MTRSession:
    """A fresh, unsaved session at step 0."""
    return MTRSession(patient_id=patient_id, **fields)


def _check_index(index: int) -> None:
    if not 0 <= index <= LAST_STEP_INDEX:
        raise ValidationError(f"Step index {index} is out of range 0-{LAST_STEP_INDEX}")


def _require_patient(session: MTRSession) -> None:
    if session.patient is None:
        raise ValidationError("Patient must be selected")


def next_step(session: MTRSession) -> Optional[int]:
    """Index of the first incomplete step, or None when all are complete."""
    for index, name in enumerate(STEP_ORDER):
        if not session.steps[name].completed:
            return index
    return None


def go_to_step(session: MTRSession, index: int) -> None:
    """Navigate to any step up to the first incomplete one."""
    _check_index(index)
    limit = next_step(session)
    if limit is not None and index > limit:
        raise ValidationError(
            f"Cannot jump to step {index} before completing step {limit}"
        )
    session.current_step_index = index


def complete_step(
    session: MTRSession, index: int, payload: Optional[dict[str, Any]] = None
) -> StepState:
    """Mark a step complete and store its payload."""
    _check_index(index)
    if STEP_ORDER[index] == StepName.PATIENT_SELECTION:
        _require_patient(session)

    state = StepState(completed=True, completed_at=datetime.utcnow(), data=payload)
    session.steps[STEP_ORDER[index]] = state
    return state


def advance(session: MTRSession) -> int:
    """Move to the next step; a no-op on the last step."""
    if session.current_step_index >= LAST_STEP_INDEX:
        return session.current_step_index
    if STEP_ORDER[session.current_step_index] == StepName.PATIENT_SELECTION:
        _require_patient(session)
    session.current_step_index += 1
    return session.current_step_index


def can_complete(session: MTRSession) -> bool:
    """True when every required step is complete."""
    return all(session.steps[name].completed for name in STEP_ORDER[:REQUIRED_STEPS])


def completion_percentage(session: MTRSession) -> int:
    completed = sum(1 for state in session.steps.values() if state.completed)
    return round(100 * completed / len(STEP_ORDER))


def step_status(session: MTRSession, index: int) -> str:
    """Rendering status of a step: completed, active or pending."""
    _check_index(index)
    if session.step(index).completed:
        return STEP_COMPLETED
    if index == session.current_step_index:
        return STEP_ACTIVE
    return STEP_PENDING


def current_step_name(session: MTRSession) -> str:
    return STEP_TITLES[STEP_ORDER[session.current_step_index]]


def validate_medications(session: MTRSession) -> list[str]:
    """Field-level medication warnings for the medication history step."""
    warnings = []
    for number, med in enumerate(session.medications, start=1):
        if not (med.indication or "").strip():
            warnings.append(f"Medication {number}: Indication is required")
        if med.strength.value <= 0:
            warnings.append(f"Medication {number}: Strength must be greater than 0")
    return warnings


def step_warnings(session: MTRSession, index: int) -> list[str]:
    """
    Advisory content checks for a step.

    These are shown by the owning screen; completing the step does not
    depend on them.
    """
    _check_index(index)
    name = STEP_ORDER[index]
    warnings: list[str] = []

    if name == StepName.PATIENT_SELECTION:
        if session.patient is None:
            warnings.append("Patient must be selected")
    elif name == StepName.MEDICATION_HISTORY:
        if not session.medications:
            warnings.append("At least one medication must be entered")
        warnings.extend(validate_medications(session))
    elif name == StepName.THERAPY_ASSESSMENT:
        if not session.problems:
            warnings.append("Assessment must be completed")
    elif name == StepName.PLAN_DEVELOPMENT:
        if session.plan is None:
            warnings.append("Therapy plan must be created")
    elif name == StepName.INTERVENTIONS:
        if not session.interventions:
            warnings.append("At least one intervention must be recorded")
    elif name == StepName.FOLLOW_UP:
        if not session.follow_ups:
            warnings.append("Follow-up must be scheduled")
    return warnings
