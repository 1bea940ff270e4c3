"""
Review lifecycle and step navigation routes.

GOVERNANCE:
- Only one in-progress review per patient
- Completion requires steps 0-3
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from api.models.medication import PatientContext
from api.models.session import STEP_ORDER, STEP_TITLES, MTRSession
from storage import get_storage
from workflow import ReviewController, get_registry

router = APIRouter(prefix="/v1/reviews", tags=["reviews"])


class CreateReviewRequest(BaseModel):
    """Request to start a review."""

    patient_id: str = Field(..., min_length=1)
    patient: Optional[PatientContext] = None


class CreateReviewResponse(BaseModel):
    """Response with the new review id."""

    session_id: str
    review_number: str | None
    status: str
    started_at: datetime


class StepProgress(BaseModel):
    index: int
    name: str
    title: str
    status: str  # 'pending', 'active', 'completed'
    completed_at: datetime | None


class ProgressResponse(BaseModel):
    """Read-only workflow state for rendering."""

    session_id: str | None
    status: str
    current_step: int
    current_step_name: str
    completion_percentage: int
    can_complete: bool
    next_step: int | None
    steps: list[StepProgress]
    last_saved_at: datetime | None


class CompleteStepRequest(BaseModel):
    data: Optional[dict[str, Any]] = None


class StepWarningsResponse(BaseModel):
    index: int
    warnings: list[str]


class SaveResponse(BaseModel):
    session_id: str
    saved_at: datetime | None


class CompleteReviewResponse(BaseModel):
    session_id: str
    status: str
    completed_at: datetime | None


def progress_response(controller: ReviewController) -> ProgressResponse:
    """Build the progress view of a review."""
    session = controller.session
    return ProgressResponse(
        session_id=session.id,
        status=session.status.value,
        current_step=controller.current_step,
        current_step_name=controller.current_step_name,
        completion_percentage=controller.completion_percentage,
        can_complete=controller.can_complete(),
        next_step=controller.next_step(),
        steps=[
            StepProgress(
                index=index,
                name=name.value,
                title=STEP_TITLES[name],
                status=controller.step_status(index),
                completed_at=session.steps[name].completed_at,
            )
            for index, name in enumerate(STEP_ORDER)
        ],
        last_saved_at=controller.last_saved_at,
    )


@router.post("", response_model=CreateReviewResponse)
async def create_review(request: CreateReviewRequest):
    """
    Start a new review for a patient.

    Returns 409 if the patient already has a review in progress.
    """
    controller = await get_registry().create(request.patient_id, request.patient)
    session = controller.session

    return CreateReviewResponse(
        session_id=session.id,
        review_number=session.review_number,
        status=session.status.value,
        started_at=session.started_at,
    )


@router.get("/stats/counts")
def get_review_counts():
    """Get counts of reviews by status."""
    return get_storage().count_by_status()


@router.get("/{session_id}", response_model=MTRSession)
async def get_review(session_id: str):
    """Get the full review."""
    controller = await get_registry().get(session_id)
    return controller.snapshot()


@router.get("/{session_id}/progress", response_model=ProgressResponse)
async def get_progress(session_id: str):
    controller = await get_registry().get(session_id)
    return progress_response(controller)


@router.post("/{session_id}/patient", response_model=ProgressResponse)
async def select_patient(session_id: str, patient: PatientContext):
    """Confirm the patient and record their allergies and conditions."""
    controller = await get_registry().get(session_id)
    controller.select_patient(patient)
    return progress_response(controller)


@router.post("/{session_id}/steps/{index}/complete", response_model=ProgressResponse)
async def complete_step(session_id: str, index: int, request: CompleteStepRequest):
    """Mark a step complete. Step 0 requires a selected patient."""
    controller = await get_registry().get(session_id)
    controller.complete_step(index, request.data)
    return progress_response(controller)


@router.post("/{session_id}/steps/{index}/goto", response_model=ProgressResponse)
async def go_to_step(session_id: str, index: int):
    controller = await get_registry().get(session_id)
    controller.go_to_step(index)
    return progress_response(controller)


@router.get("/{session_id}/steps/{index}/warnings", response_model=StepWarningsResponse)
async def get_step_warnings(session_id: str, index: int):
    """Advisory content checks for a step (never block completion)."""
    controller = await get_registry().get(session_id)
    return StepWarningsResponse(index=index, warnings=controller.step_warnings(index))


@router.post("/{session_id}/advance", response_model=ProgressResponse)
async def advance(session_id: str):
    controller = await get_registry().get(session_id)
    controller.advance()
    return progress_response(controller)


@router.post("/{session_id}/save", response_model=SaveResponse)
async def save_review(session_id: str):
    """Save now. Gateway failures are reported, not retried."""
    controller = await get_registry().get(session_id)
    await controller.save()
    return SaveResponse(session_id=session_id, saved_at=controller.last_saved_at)


@router.post("/{session_id}/complete", response_model=CompleteReviewResponse)
async def complete_review(session_id: str):
    controller = await get_registry().complete(session_id)
    session = controller.session
    return CompleteReviewResponse(
        session_id=session.id,
        status=session.status.value,
        completed_at=session.completed_at,
    )


@router.post("/{session_id}/cancel", response_model=ProgressResponse)
async def cancel_review(session_id: str):
    controller = await get_registry().cancel(session_id)
    return progress_response(controller)


@router.post("/{session_id}/hold", response_model=ProgressResponse)
async def hold_review(session_id: str):
    controller = await get_registry().get(session_id)
    await controller.hold_review()
    return progress_response(controller)


@router.post("/{session_id}/resume", response_model=ProgressResponse)
async def resume_review(session_id: str):
    controller = await get_registry().get(session_id)
    await controller.resume_review()
    return progress_response(controller)
