"""
Therapy assessment routes.

GOVERNANCE:
- Automated findings are suggestions for pharmacist review
- Re-running an assessment never duplicates recorded problems
"""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from api.models.problem import DrugTherapyProblem
from assessment import run_assessment
from workflow import get_registry

router = APIRouter(prefix="/v1", tags=["assessment"])


class CheckRequest(BaseModel):
    """Stateless screening request."""

    # Raw entries; malformed ones are skipped and reported
    medications: list[dict[str, Any]]
    allergies: list[str] = Field(default_factory=list)
    conditions: list[str] = Field(default_factory=list)


class AssessmentResponse(BaseModel):
    """Findings of an assessment run."""

    problems: list[DrugTherapyProblem]
    by_check: dict[str, int]
    severity_counts: dict[str, int]
    skipped: list[int] = Field(default_factory=list)
    new_problem_ids: list[str] = Field(default_factory=list)
    stale_problem_ids: list[str] = Field(default_factory=list)


class AdherenceResponse(BaseModel):
    problems: list[DrugTherapyProblem]
    new_problem_ids: list[str]


@router.post("/assessment/check", response_model=AssessmentResponse)
def check_medications(request: CheckRequest):
    """Screen a medication list without touching any review."""
    result = run_assessment(
        request.medications,
        allergies=request.allergies,
        conditions=request.conditions,
    )
    return AssessmentResponse(
        problems=result.problems,
        by_check={check.value: len(found) for check, found in result.by_check.items()},
        severity_counts=result.severity_counts(),
        skipped=result.skipped,
    )


@router.post("/reviews/{session_id}/assessment", response_model=AssessmentResponse)
async def assess_review(session_id: str):
    """Run the rule engine over the review's medications and patient."""
    controller = await get_registry().get(session_id)
    result, merged = controller.run_assessment()
    return AssessmentResponse(
        problems=result.problems,
        by_check={check.value: len(found) for check, found in result.by_check.items()},
        severity_counts=result.severity_counts(),
        skipped=result.skipped,
        new_problem_ids=[p.id for p in merged.new],
        stale_problem_ids=[p.id for p in merged.stale],
    )


@router.post("/reviews/{session_id}/assessment/adherence", response_model=AdherenceResponse)
async def assess_adherence(session_id: str):
    controller = await get_registry().get(session_id)
    problems, merged = controller.run_adherence_check()
    return AdherenceResponse(
        problems=problems,
        new_problem_ids=[p.id for p in merged.new],
    )
