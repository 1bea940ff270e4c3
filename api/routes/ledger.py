"""
Medication, problem, plan, intervention and follow-up routes.

GOVERNANCE:
- Problems are never deleted
- Manual problems record the identifying pharmacist
- Intervention outcomes are recorded once
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from api.models.followup import FollowUp, FollowUpOutcome
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
    EvidenceLevel,
    ProblemCategory,
    ProblemStatus,
    ProblemType,
    Severity,
)
from workflow import get_registry

router = APIRouter(prefix="/v1/reviews", tags=["ledger"])


class ManualProblemRequest(BaseModel):
    """Problem identified by a pharmacist."""

    identified_by: str = Field(..., min_length=1)
    category: ProblemCategory
    subcategory: Optional[str] = None
    type: ProblemType
    severity: Severity
    evidence_level: EvidenceLevel
    description: str = Field(..., min_length=1)
    clinical_significance: str = ""
    affected_medications: list[str] = Field(default_factory=list)
    related_conditions: list[str] = Field(default_factory=list)
    risk_factors: list[str] = Field(default_factory=list)


class ProblemStatusRequest(BaseModel):
    status: ProblemStatus
    resolution: Optional[str] = None


class OutcomeRequest(BaseModel):
    outcome: InterventionOutcome
    details: Optional[str] = None


class CompleteFollowUpRequest(BaseModel):
    outcome: FollowUpOutcome
    notes: Optional[str] = None


class RescheduleRequest(BaseModel):
    new_date: datetime
    reason: Optional[str] = None


# Medications


@router.post("/{session_id}/medications", response_model=MedicationEntry)
async def add_medication(session_id: str, medication: MedicationEntry):
    controller = await get_registry().get(session_id)
    return controller.add_medication(medication)


@router.put("/{session_id}/medications", response_model=list[MedicationEntry])
async def set_medications(session_id: str, medications: list[MedicationEntry]):
    """Replace the medication list."""
    controller = await get_registry().get(session_id)
    controller.set_medications(medications)
    return controller.session.medications


@router.patch("/{session_id}/medications/{medication_id}", response_model=MedicationEntry)
async def update_medication(session_id: str, medication_id: str, updates: dict[str, Any]):
    """Partially update a medication; the result is re-validated."""
    controller = await get_registry().get(session_id)
    try:
        return controller.update_medication(medication_id, updates)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.delete("/{session_id}/medications/{medication_id}")
async def remove_medication(session_id: str, medication_id: str):
    controller = await get_registry().get(session_id)
    controller.remove_medication(medication_id)
    return {"removed": medication_id}


# Problems


@router.post("/{session_id}/problems", response_model=DrugTherapyProblem)
async def add_problem(session_id: str, request: ManualProblemRequest):
    controller = await get_registry().get(session_id)
    return controller.add_problem(DrugTherapyProblem(**request.model_dump()))


@router.post("/{session_id}/problems/{problem_id}/status", response_model=DrugTherapyProblem)
async def set_problem_status(session_id: str, problem_id: str, request: ProblemStatusRequest):
    controller = await get_registry().get(session_id)
    return controller.set_problem_status(problem_id, request.status, request.resolution)


# Plan


@router.put("/{session_id}/plan", response_model=TherapyPlan)
async def set_plan(session_id: str, plan: TherapyPlan):
    controller = await get_registry().get(session_id)
    return controller.set_plan(plan)


@router.post("/{session_id}/plan/recommendations", response_model=TherapyPlan)
async def add_recommendation(session_id: str, recommendation: TherapyRecommendation):
    """Add a recommendation to the existing plan."""
    controller = await get_registry().get(session_id)
    controller.add_recommendation(recommendation)
    return controller.session.plan


@router.post("/{session_id}/plan/monitoring", response_model=TherapyPlan)
async def add_monitoring_parameter(session_id: str, parameter: MonitoringParameter):
    controller = await get_registry().get(session_id)
    controller.add_monitoring_parameter(parameter)
    return controller.session.plan


@router.post("/{session_id}/plan/goals", response_model=TherapyPlan)
async def add_goal(session_id: str, goal: TherapyGoal):
    controller = await get_registry().get(session_id)
    controller.add_goal(goal)
    return controller.session.plan


# Interventions


@router.post("/{session_id}/interventions", response_model=Intervention)
async def record_intervention(session_id: str, intervention: Intervention):
    controller = await get_registry().get(session_id)
    return controller.record_intervention(intervention)


@router.post(
    "/{session_id}/interventions/{intervention_id}/outcome", response_model=Intervention
)
async def set_intervention_outcome(
    session_id: str, intervention_id: str, request: OutcomeRequest
):
    """Record the outcome. A second outcome is rejected."""
    controller = await get_registry().get(session_id)
    return controller.set_intervention_outcome(
        intervention_id, request.outcome, request.details
    )


@router.post(
    "/{session_id}/interventions/{intervention_id}/follow-up-completed",
    response_model=Intervention,
)
async def mark_intervention_follow_up_completed(session_id: str, intervention_id: str):
    controller = await get_registry().get(session_id)
    return controller.mark_intervention_follow_up_completed(intervention_id)


# Follow-ups


@router.post("/{session_id}/follow-ups", response_model=FollowUp)
async def schedule_follow_up(session_id: str, follow_up: FollowUp):
    controller = await get_registry().get(session_id)
    return controller.schedule_follow_up(follow_up)


@router.post("/{session_id}/follow-ups/{follow_up_id}/complete", response_model=FollowUp)
async def complete_follow_up(
    session_id: str, follow_up_id: str, request: CompleteFollowUpRequest
):
    controller = await get_registry().get(session_id)
    return controller.complete_follow_up(follow_up_id, request.outcome, request.notes)


@router.post("/{session_id}/follow-ups/{follow_up_id}/reschedule", response_model=FollowUp)
async def reschedule_follow_up(session_id: str, follow_up_id: str, request: RescheduleRequest):
    controller = await get_registry().get(session_id)
    return controller.reschedule_follow_up(follow_up_id, request.new_date, request.reason)


@router.post("/{session_id}/follow-ups/{follow_up_id}/missed", response_model=FollowUp)
async def mark_follow_up_missed(session_id: str, follow_up_id: str):
    controller = await get_registry().get(session_id)
    return controller.mark_follow_up_missed(follow_up_id)


@router.post("/{session_id}/follow-ups/{follow_up_id}/cancel", response_model=FollowUp)
async def cancel_follow_up(session_id: str, follow_up_id: str):
    controller = await get_registry().get(session_id)
    return controller.cancel_follow_up(follow_up_id)


# Summary


@router.get("/{session_id}/summary")
async def get_summary(session_id: str):
    """Counts of problems, interventions and follow-ups."""
    controller = await get_registry().get(session_id)
    return controller.summary()
