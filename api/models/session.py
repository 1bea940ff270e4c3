"""
MTR session models.

GOVERNANCE:
- Step order is fixed and is the workflow order
- A session is only completed when the required steps are complete
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from api.models.followup import FollowUp
from api.models.intervention import Intervention
from api.models.medication import MedicationEntry, PatientContext
from api.models.plan import TherapyPlan
from api.models.problem import DrugTherapyProblem


class SessionStatus(str, Enum):
    """Session status enum."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"


class ReviewPriority(str, Enum):
    ROUTINE = "routine"
    URGENT = "urgent"
    HIGH_RISK = "high_risk"


class ReviewType(str, Enum):
    INITIAL = "initial"
    FOLLOW_UP = "follow_up"
    ANNUAL = "annual"
    TARGETED = "targeted"


class StepName(str, Enum):
    """Workflow steps, declared in workflow order."""

    PATIENT_SELECTION = "patient_selection"
    MEDICATION_HISTORY = "medication_history"
    THERAPY_ASSESSMENT = "therapy_assessment"
    PLAN_DEVELOPMENT = "plan_development"
    INTERVENTIONS = "interventions"
    FOLLOW_UP = "follow_up"


STEP_ORDER: tuple[StepName, ...] = tuple(StepName)

STEP_TITLES = {
    StepName.PATIENT_SELECTION: "Patient Selection",
    StepName.MEDICATION_HISTORY: "Medication History",
    StepName.THERAPY_ASSESSMENT: "Therapy Assessment",
    StepName.PLAN_DEVELOPMENT: "Plan Development",
    StepName.INTERVENTIONS: "Interventions",
    StepName.FOLLOW_UP: "Follow-Up",
}

LAST_STEP_INDEX = len(STEP_ORDER) - 1

# Steps 0-3 must be complete before a review can be finalized
REQUIRED_STEPS = 4

# Days before an open review is overdue
OVERDUE_DAYS = {"routine": 7, "urgent": 1, "high_risk": 1}


class StepState(BaseModel):
    """Completion state of one workflow step."""

    completed: bool = False
    completed_at: Optional[datetime] = None
    data: Optional[dict[str, Any]] = None


def _initial_steps() -> dict[StepName, StepState]:
    return {name: StepState() for name in STEP_ORDER}


class MTRSession(BaseModel):
    """Medication therapy review session."""

    id: Optional[str] = None  # assigned by the persistence gateway
    patient_id: str = Field(..., min_length=1)
    patient: Optional[PatientContext] = None
    review_number: Optional[str] = None
    status: SessionStatus = SessionStatus.IN_PROGRESS
    priority: ReviewPriority = ReviewPriority.ROUTINE
    review_type: ReviewType = ReviewType.INITIAL

    steps: dict[StepName, StepState] = Field(default_factory=_initial_steps)
    current_step_index: int = Field(default=0, ge=0, le=LAST_STEP_INDEX)

    medications: list[MedicationEntry] = Field(default_factory=list)
    problems: list[DrugTherapyProblem] = Field(default_factory=list)
    plan: Optional[TherapyPlan] = None
    interventions: list[Intervention] = Field(default_factory=list)
    follow_ups: list[FollowUp] = Field(default_factory=list)

    started_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def step(self, index: int) -> StepState:
        """Step state by workflow index."""
        return self.steps[STEP_ORDER[index]]

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """True when an open review has run past its priority window."""
        if self.status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED):
            return False
        now = now or datetime.utcnow()
        days_open = (now - self.started_at).days
        return days_open > OVERDUE_DAYS[self.priority.value]
