"""
Problem, intervention and follow-up ledger for a review.

GOVERNANCE:
- Records are appended or status-transitioned, never deleted
- An intervention outcome is recorded exactly once
- Only open (scheduled or rescheduled) follow-ups change status
- Record ids are unique within a review; new records start in their initial state
"""

import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Optional, TypeVar

from api.models.followup import FollowUp, FollowUpOutcome, FollowUpStatus
from api.models.intervention import Intervention, InterventionOutcome
from api.models.medication import MedicationEntry
from api.models.plan import (
    MonitoringParameter,
    TherapyGoal,
    TherapyPlan,
    TherapyRecommendation,
)
from api.models.problem import (
    DrugTherapyProblem,
    ProblemResolution,
    ProblemStatus,
    Severity,
)
from api.models.session import MTRSession
from assessment.engine import AssessmentResult
from assessment.reconcile import Reconciliation, reconcile
from workflow.errors import ValidationError
from workflow.steps import completion_percentage

logger = logging.getLogger(__name__)

T = TypeVar("T")

OPEN_FOLLOW_UP_STATUSES = (FollowUpStatus.SCHEDULED, FollowUpStatus.RESCHEDULED)

# Allowed problem status transitions
PROBLEM_TRANSITIONS = {
    ProblemStatus.IDENTIFIED: {ProblemStatus.ADDRESSED, ProblemStatus.MONITORING},
    ProblemStatus.MONITORING: {ProblemStatus.ADDRESSED},
    ProblemStatus.ADDRESSED: set(),
}


def _find(items: list[T], item_id: str, kind: str) -> T:
    for item in items:
        if getattr(item, "id", None) == item_id:
            return item
    raise ValidationError(f"{kind} {item_id} not found")


def _require_new_id(items: list, item_id: Optional[str], kind: str) -> None:
    if item_id is not None and any(getattr(item, "id", None) == item_id for item in items):
        raise ValidationError(f"{kind} {item_id} already exists")


def _touch(session: MTRSession) -> None:
    session.updated_at = datetime.utcnow()


# Medications


def add_medication(session: MTRSession, medication: MedicationEntry) -> MedicationEntry:
    _require_new_id(session.medications, medication.id, "Medication")
    entry = medication.model_copy(update={"id": medication.id or str(uuid.uuid4())})
    session.medications.append(entry)
    _touch(session)
    return entry


def update_medication(
    session: MTRSession, medication_id: str, updates: dict[str, Any]
) -> MedicationEntry:
    """Apply field updates to a medication, re-validating the result."""
    current = _find(session.medications, medication_id, "Medication")
    merged = current.model_dump()
    merged.update(updates)
    merged["id"] = medication_id
    updated = MedicationEntry.model_validate(merged)
    index = session.medications.index(current)
    session.medications[index] = updated
    _touch(session)
    return updated


def remove_medication(session: MTRSession, medication_id: str) -> None:
    current = _find(session.medications, medication_id, "Medication")
    session.medications.remove(current)
    _touch(session)


def set_medications(session: MTRSession, medications: list[MedicationEntry]) -> None:
    """Replace the whole medication list. Supplied ids must be unique."""
    entries: list[MedicationEntry] = []
    for m in medications:
        _require_new_id(entries, m.id, "Medication")
        entries.append(m.model_copy(update={"id": m.id or str(uuid.uuid4())}))
    session.medications = entries
    _touch(session)


# Problems


def add_problem(session: MTRSession, problem: DrugTherapyProblem) -> DrugTherapyProblem:
    """Record a manually identified problem."""
    _require_new_id(session.problems, problem.id, "Problem")
    if problem.status != ProblemStatus.IDENTIFIED:
        raise ValidationError("New problems must start as identified")
    session.problems.append(problem)
    _touch(session)
    return problem


def merge_problems(
    session: MTRSession, fresh: list[DrugTherapyProblem]
) -> Reconciliation:
    """Append only findings the review does not already have."""
    result = reconcile(session.problems, fresh)
    session.problems.extend(result.new)
    if result.new:
        _touch(session)
    logger.info(
        "Merged assessment into review %s: %d new, %d existing, %d stale",
        session.id,
        len(result.new),
        len(result.existing),
        len(result.stale),
    )
    return result


def merge_assessment(session: MTRSession, assessment: AssessmentResult) -> Reconciliation:
    return merge_problems(session, assessment.problems)


def set_problem_status(
    session: MTRSession,
    problem_id: str,
    status: ProblemStatus,
    resolution: Optional[str] = None,
) -> DrugTherapyProblem:
    """Transition a problem along identified -> monitoring -> addressed."""
    problem = _find(session.problems, problem_id, "Problem")
    if status not in PROBLEM_TRANSITIONS[problem.status]:
        raise ValidationError(
            f"Problem {problem_id} cannot move from {problem.status.value} to {status.value}"
        )
    problem.status = status
    if status == ProblemStatus.ADDRESSED:
        problem.resolution = ProblemResolution(
            action=resolution or "Addressed by pharmacist",
            outcome="Problem resolved",
        )
    _touch(session)
    return problem


# Therapy plan


def set_plan(session: MTRSession, plan: TherapyPlan) -> TherapyPlan:
    session.plan = plan
    _touch(session)
    return plan


def _require_plan(session: MTRSession) -> TherapyPlan:
    if session.plan is None:
        raise ValidationError("Therapy plan must be created first")
    return session.plan


def add_recommendation(session: MTRSession, recommendation: TherapyRecommendation) -> None:
    _require_plan(session).recommendations.append(recommendation)
    _touch(session)


def add_monitoring_parameter(session: MTRSession, parameter: MonitoringParameter) -> None:
    _require_plan(session).monitoring.append(parameter)
    _touch(session)


def add_goal(session: MTRSession, goal: TherapyGoal) -> None:
    _require_plan(session).goals.append(goal)
    _touch(session)


# Interventions


def record_intervention(session: MTRSession, intervention: Intervention) -> Intervention:
    """Record a new intervention; its outcome starts pending."""
    _require_new_id(session.interventions, intervention.id, "Intervention")
    if intervention.outcome != InterventionOutcome.PENDING:
        raise ValidationError("New interventions must start with a pending outcome")
    if intervention.follow_up_completed:
        raise ValidationError("New interventions cannot have their follow-up completed")
    if intervention.target_problem_id is not None:
        _find(session.problems, intervention.target_problem_id, "Problem")
    session.interventions.append(intervention)
    _touch(session)
    return intervention


def set_intervention_outcome(
    session: MTRSession,
    intervention_id: str,
    outcome: InterventionOutcome,
    details: Optional[str] = None,
) -> Intervention:
    """Record the outcome of a pending intervention. Applies exactly once."""
    intervention = _find(session.interventions, intervention_id, "Intervention")
    if outcome == InterventionOutcome.PENDING:
        raise ValidationError("Outcome must be accepted, rejected or modified")
    if intervention.outcome != InterventionOutcome.PENDING:
        raise ValidationError(
            f"Intervention {intervention_id} already has outcome "
            f"{intervention.outcome.value}"
        )
    intervention.outcome = outcome
    intervention.outcome_details = details or ""
    _touch(session)
    return intervention


def mark_intervention_follow_up_completed(
    session: MTRSession, intervention_id: str
) -> Intervention:
    intervention = _find(session.interventions, intervention_id, "Intervention")
    if not intervention.follow_up_required:
        raise ValidationError(f"Intervention {intervention_id} requires no follow-up")
    intervention.follow_up_completed = True
    _touch(session)
    return intervention


# Follow-ups


def schedule_follow_up(session: MTRSession, follow_up: FollowUp) -> FollowUp:
    _require_new_id(session.follow_ups, follow_up.id, "Follow-up")
    if follow_up.status != FollowUpStatus.SCHEDULED:
        raise ValidationError("New follow-ups must start as scheduled")
    if follow_up.outcome is not None or follow_up.completed_at is not None:
        raise ValidationError("New follow-ups cannot carry an outcome")
    if follow_up.intervention_id is not None:
        _find(session.interventions, follow_up.intervention_id, "Intervention")
    session.follow_ups.append(follow_up)
    _touch(session)
    return follow_up


def _open_follow_up(session: MTRSession, follow_up_id: str) -> FollowUp:
    follow_up = _find(session.follow_ups, follow_up_id, "Follow-up")
    if follow_up.status not in OPEN_FOLLOW_UP_STATUSES:
        raise ValidationError(
            f"Follow-up {follow_up_id} is already {follow_up.status.value}"
        )
    return follow_up


def complete_follow_up(
    session: MTRSession,
    follow_up_id: str,
    outcome: FollowUpOutcome,
    notes: Optional[str] = None,
) -> FollowUp:
    follow_up = _open_follow_up(session, follow_up_id)
    follow_up.status = FollowUpStatus.COMPLETED
    follow_up.completed_at = datetime.utcnow()
    follow_up.outcome = outcome
    follow_up.outcome_notes = notes
    _touch(session)
    return follow_up


def mark_follow_up_missed(session: MTRSession, follow_up_id: str) -> FollowUp:
    follow_up = _open_follow_up(session, follow_up_id)
    follow_up.status = FollowUpStatus.MISSED
    _touch(session)
    return follow_up


def cancel_follow_up(session: MTRSession, follow_up_id: str) -> FollowUp:
    follow_up = _open_follow_up(session, follow_up_id)
    follow_up.status = FollowUpStatus.CANCELLED
    _touch(session)
    return follow_up


def reschedule_follow_up(
    session: MTRSession,
    follow_up_id: str,
    new_date: datetime,
    reason: Optional[str] = None,
) -> FollowUp:
    """Move a follow-up to a new date on the same record."""
    follow_up = _open_follow_up(session, follow_up_id)
    previous = follow_up.scheduled_date.isoformat()
    note = f"previously {previous}"
    follow_up.rescheduled_reason = f"{reason} ({note})" if reason else note
    follow_up.scheduled_date = new_date
    follow_up.status = FollowUpStatus.RESCHEDULED
    _touch(session)
    return follow_up


# Aggregation


def review_summary(session: MTRSession) -> dict[str, Any]:
    """Counts for the review dashboard."""
    open_problems = [p for p in session.problems if p.status != ProblemStatus.ADDRESSED]
    severity = Counter(p.severity.value for p in open_problems)
    return {
        "completion_percentage": completion_percentage(session),
        "problems_total": len(session.problems),
        "problems_open": len(open_problems),
        "open_by_severity": {s.value: severity.get(s.value, 0) for s in Severity},
        "interventions_total": len(session.interventions),
        "interventions_pending": sum(
            1 for i in session.interventions if i.outcome == InterventionOutcome.PENDING
        ),
        "follow_ups_outstanding": sum(
            1
            for f in session.follow_ups
            if f.status in OPEN_FOLLOW_UP_STATUSES
        ),
        "is_overdue": session.is_overdue(),
    }
