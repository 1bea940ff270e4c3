"""API models."""

from api.models.followup import FollowUp, FollowUpOutcome, FollowUpStatus, FollowUpType
from api.models.intervention import (
    Intervention,
    InterventionOutcome,
    InterventionType,
    Priority,
    Urgency,
)
from api.models.medication import (
    Instructions,
    MedicationCategory,
    MedicationEntry,
    PatientContext,
    Strength,
)
from api.models.plan import (
    MonitoringParameter,
    TherapyGoal,
    TherapyPlan,
    TherapyRecommendation,
)
from api.models.problem import (
    DrugTherapyProblem,
    EvidenceLevel,
    ProblemCategory,
    ProblemStatus,
    ProblemType,
    Severity,
)
from api.models.session import (
    STEP_ORDER,
    MTRSession,
    SessionStatus,
    StepName,
    StepState,
)

__all__ = [
    "MTRSession",
    "SessionStatus",
    "StepName",
    "StepState",
    "STEP_ORDER",
    "MedicationEntry",
    "MedicationCategory",
    "Strength",
    "Instructions",
    "PatientContext",
    "DrugTherapyProblem",
    "ProblemCategory",
    "ProblemType",
    "ProblemStatus",
    "Severity",
    "EvidenceLevel",
    "Intervention",
    "InterventionOutcome",
    "InterventionType",
    "Priority",
    "Urgency",
    "FollowUp",
    "FollowUpOutcome",
    "FollowUpStatus",
    "FollowUpType",
    "TherapyPlan",
    "TherapyRecommendation",
    "MonitoringParameter",
    "TherapyGoal",
]
