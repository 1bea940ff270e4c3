"""
Review controller: the MTR session state machine.

Owns one active session and is its only writer. Step transitions and ledger
updates are synchronous; gateway calls (create, load, save, complete,
cancel) are the only suspension points.

GOVERNANCE:
- A review cannot be completed until steps 0-3 are complete
- A review cannot be completed without a durable id
- Auto-save failures never interrupt the pharmacist; manual saves report them
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Optional, TypeVar

from api.models.followup import FollowUp, FollowUpOutcome
from api.models.intervention import Intervention, InterventionOutcome
from api.models.medication import MedicationEntry, PatientContext
from api.models.plan import (
    MonitoringParameter,
    TherapyGoal,
    TherapyPlan,
    TherapyRecommendation,
)
from api.models.problem import DrugTherapyProblem, ProblemStatus
from api.models.session import MTRSession, SessionStatus, StepState
from assessment.engine import AssessmentResult, check_adherence, run_assessment
from assessment.reconcile import Reconciliation
from config import Settings, get_settings
from storage.gateway import PersistenceGateway, SessionConflictError
from workflow import ledger, steps
from workflow.errors import (
    ConflictError,
    IdentityRecoveryError,
    PersistenceError,
    PreconditionError,
    ReviewNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReviewController:
    """State machine for a single medication therapy review."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        settings: Optional[Settings] = None,
    ):
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.autosave_enabled = self.settings.autosave_enabled
        self.last_saved_at: Optional[datetime] = None

        self._session: Optional[MTRSession] = None
        # Single in-flight guard shared by auto-save, save, complete and cancel
        self._save_lock = asyncio.Lock()
        # Pending create/load round-trip that will give the session its id
        self._identity_task: Optional[asyncio.Task] = None

    # Gateway access

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a gateway call, translating failures to PersistenceError."""
        try:
            return await awaitable
        except SessionConflictError as e:
            raise ConflictError(str(e), session_id=e.session_id) from e
        except LookupError as e:
            raise ReviewNotFoundError(f"{operation}: {e}") from e
        except Exception as e:
            logger.error("Gateway %s failed: %s", operation, e)
            raise PersistenceError(f"{operation} failed: {e}") from e

    # Session lifecycle

    @property
    def session(self) -> MTRSession:
        """The active session."""
        if self._session is None:
            raise PreconditionError("No review is loaded")
        return self._session

    @property
    def has_session(self) -> bool:
        return self._session is not None

    def _editable(self) -> MTRSession:
        session = self.session
        if session.status != SessionStatus.IN_PROGRESS:
            raise PreconditionError(f"Review is {session.status.value}, not in progress")
        return session

    async def create_review(
        self, patient_id: str, patient: Optional[PatientContext] = None
    ) -> MTRSession:
        """
        Start a new review for a patient.

        Args:
            patient_id: Subject patient
            patient: Clinical context, if already selected

        Returns:
            The new session, with its durable id once the gateway confirms it

        Raises:
            ConflictError: the patient already has an in-progress review
            PersistenceError: the gateway call failed (the unsaved session
                stays loaded)
        """
        if patient is not None and patient.patient_id != patient_id:
            raise ValidationError("Patient context does not match the review patient")

        existing = await self._call(
            "load_in_progress", self.gateway.load_in_progress(patient_id)
        )
        if existing is not None:
            raise ConflictError(
                f"Patient {patient_id} already has review {existing.id} in progress",
                session_id=existing.id,
            )

        session = steps.new_session(patient_id, patient=patient)
        self._session = session
        self.last_saved_at = None
        self._identity_task = asyncio.create_task(self._assign_identity(session))
        try:
            await self._identity_task
        except ConflictError:
            # Another create for the patient won the race at the gateway
            self._session = None
            self._identity_task = None
            raise
        logger.info("Created review %s for patient %s", session.id, patient_id)
        return session

    async def _assign_identity(self, session: MTRSession) -> None:
        created = await self._call("create", self.gateway.create(session.patient_id))
        session.id = created.id
        if session.review_number is None:
            session.review_number = created.review_number

    async def load_review(self, session_id: str) -> MTRSession:
        """Load an existing review by id and make it active."""
        self._identity_task = asyncio.create_task(self._load_into(session_id))
        await self._identity_task
        logger.info("Loaded review %s", session_id)
        return self.session

    async def _load_into(self, session_id: str) -> None:
        self._session = await self._call("load", self.gateway.load(session_id))
        self.last_saved_at = None

    async def resume_in_progress(self, patient_id: str) -> Optional[MTRSession]:
        """Make the patient's in-progress review active, if there is one."""
        existing = await self._call(
            "load_in_progress", self.gateway.load_in_progress(patient_id)
        )
        if existing is not None:
            self._session = existing
            self._identity_task = None
            logger.info("Resumed review %s for patient %s", existing.id, patient_id)
        return existing

    def restore(self, session: MTRSession) -> None:
        """Attach a cached snapshot, which may not have an id yet."""
        self._session = session.model_copy(deep=True)
        self._identity_task = None

    def snapshot(self) -> MTRSession:
        """Deep copy of the active session for rendering."""
        return self.session.model_copy(deep=True)

    # Navigation

    def select_patient(self, patient: PatientContext) -> None:
        session = self._editable()
        if patient.patient_id != session.patient_id:
            raise ValidationError("Selected patient does not match the review patient")
        session.patient = patient.model_copy(deep=True)

    def go_to_step(self, index: int) -> None:
        steps.go_to_step(self._editable(), index)

    def complete_step(self, index: int, payload: Optional[dict[str, Any]] = None) -> StepState:
        return steps.complete_step(self._editable(), index, payload)

    def advance(self) -> int:
        return steps.advance(self._editable())

    # Selectors

    @property
    def current_step(self) -> int:
        return self.session.current_step_index

    @property
    def current_step_name(self) -> str:
        return steps.current_step_name(self.session)

    @property
    def completion_percentage(self) -> int:
        return steps.completion_percentage(self.session)

    def can_complete(self) -> bool:
        return steps.can_complete(self.session)

    def step_status(self, index: int) -> str:
        return steps.step_status(self.session, index)

    def next_step(self) -> Optional[int]:
        return steps.next_step(self.session)

    def step_warnings(self, index: int) -> list[str]:
        return steps.step_warnings(self.session, index)

    def summary(self) -> dict[str, Any]:
        return ledger.review_summary(self.session)

    # Medications

    def add_medication(self, medication: MedicationEntry) -> MedicationEntry:
        return ledger.add_medication(self._editable(), medication)

    def update_medication(self, medication_id: str, updates: dict[str, Any]) -> MedicationEntry:
        return ledger.update_medication(self._editable(), medication_id, updates)

    def remove_medication(self, medication_id: str) -> None:
        ledger.remove_medication(self._editable(), medication_id)

    def set_medications(self, medications: list[MedicationEntry]) -> None:
        ledger.set_medications(self._editable(), medications)

    # Assessment

    def run_assessment(self) -> tuple[AssessmentResult, Reconciliation]:
        """Run the rule engine and add only findings not already recorded."""
        session = self._editable()
        result = run_assessment(session.medications, session.patient)
        return result, ledger.merge_assessment(session, result)

    def run_adherence_check(self) -> tuple[list[DrugTherapyProblem], Reconciliation]:
        session = self._editable()
        problems = check_adherence(
            session.medications,
            default_score=self.settings.default_adherence_score,
            threshold=self.settings.adherence_threshold,
            poor_threshold=self.settings.poor_adherence_threshold,
        )
        return problems, ledger.merge_problems(session, problems)

    def add_problem(self, problem: DrugTherapyProblem) -> DrugTherapyProblem:
        return ledger.add_problem(self._editable(), problem)

    def set_problem_status(
        self, problem_id: str, status: ProblemStatus, resolution: Optional[str] = None
    ) -> DrugTherapyProblem:
        return ledger.set_problem_status(self._editable(), problem_id, status, resolution)

    # Plan

    def set_plan(self, plan: TherapyPlan) -> TherapyPlan:
        return ledger.set_plan(self._editable(), plan)

    def add_recommendation(self, recommendation: TherapyRecommendation) -> None:
        ledger.add_recommendation(self._editable(), recommendation)

    def add_monitoring_parameter(self, parameter: MonitoringParameter) -> None:
        ledger.add_monitoring_parameter(self._editable(), parameter)

    def add_goal(self, goal: TherapyGoal) -> None:
        ledger.add_goal(self._editable(), goal)

    # Interventions and follow-ups

    def record_intervention(self, intervention: Intervention) -> Intervention:
        return ledger.record_intervention(self._editable(), intervention)

    def set_intervention_outcome(
        self,
        intervention_id: str,
        outcome: InterventionOutcome,
        details: Optional[str] = None,
    ) -> Intervention:
        return ledger.set_intervention_outcome(
            self._editable(), intervention_id, outcome, details
        )

    def mark_intervention_follow_up_completed(self, intervention_id: str) -> Intervention:
        return ledger.mark_intervention_follow_up_completed(self._editable(), intervention_id)

    def schedule_follow_up(self, follow_up: FollowUp) -> FollowUp:
        return ledger.schedule_follow_up(self._editable(), follow_up)

    def complete_follow_up(
        self, follow_up_id: str, outcome: FollowUpOutcome, notes: Optional[str] = None
    ) -> FollowUp:
        return ledger.complete_follow_up(self._editable(), follow_up_id, outcome, notes)

    def mark_follow_up_missed(self, follow_up_id: str) -> FollowUp:
        return ledger.mark_follow_up_missed(self._editable(), follow_up_id)

    def cancel_follow_up(self, follow_up_id: str) -> FollowUp:
        return ledger.cancel_follow_up(self._editable(), follow_up_id)

    def reschedule_follow_up(
        self, follow_up_id: str, new_date: datetime, reason: Optional[str] = None
    ) -> FollowUp:
        return ledger.reschedule_follow_up(self._editable(), follow_up_id, new_date, reason)

    # Persistence

    async def _await_identity(self) -> None:
        """Let a pending create/load round-trip settle."""
        task = self._identity_task
        if task is None:
            return
        try:
            await task
        except PersistenceError as e:
            logger.warning("Pending identity round-trip failed: %s", e)

    async def _upsert(self, session: MTRSession) -> MTRSession:
        saved = await self._call("upsert", self.gateway.upsert(session.model_copy(deep=True)))
        self.last_saved_at = datetime.utcnow()
        if session.review_number is None:
            session.review_number = saved.review_number
        return saved

    async def save(self) -> MTRSession:
        """
        Save the active review now.

        Waits for an in-flight auto-save instead of racing it.

        Raises:
            PreconditionError: the review has no durable id yet
            PersistenceError: the gateway call failed
        """
        await self._await_identity()
        session = self.session
        if session.id is None:
            raise PreconditionError("Review has no durable id yet")
        async with self._save_lock:
            saved = await self._upsert(session)
        logger.info("Saved review %s", session.id)
        return saved

    async def autosave_tick(self) -> bool:
        """One auto-save firing. Returns True if the review was saved."""
        session = self._session
        if session is None:
            return False
        if not self.autosave_enabled:
            return False
        if session.status != SessionStatus.IN_PROGRESS:
            logger.debug(
                "Auto-save skipped for %s: review is %s", session.id, session.status.value
            )
            return False
        if self._save_lock.locked():
            logger.debug("Auto-save skipped for %s: save in flight", session.id)
            return False
        if session.id is None:
            logger.debug("Auto-save skipped: review has no durable id yet")
            return False

        async with self._save_lock:
            try:
                await self._upsert(session)
            except PersistenceError as e:
                logger.warning(
                    "Auto-save of review %s failed, retrying next tick: %s", session.id, e
                )
                return False
        return True

    async def _resolve_identity(self, id_hint: Optional[str]) -> str:
        """Find the durable id of the active session, or fail."""
        session = self.session
        if session.id is not None:
            return session.id

        # A create or load may still be in flight
        await self._await_identity()
        latest = self.session
        if latest.id is not None:
            logger.info("Recovered review id %s after pending round-trip", latest.id)
            return latest.id

        if id_hint:
            try:
                stored = await self._call("load", self.gateway.load(id_hint))
            except PersistenceError as e:
                raise IdentityRecoveryError(
                    f"Could not reload review {id_hint}: {e}"
                ) from e
            if stored.patient_id != latest.patient_id:
                raise IdentityRecoveryError(
                    f"Review {id_hint} belongs to a different patient"
                )
            latest.id = stored.id
            if latest.review_number is None:
                latest.review_number = stored.review_number
            logger.info("Recovered review id %s from hint", latest.id)
            return latest.id

        raise IdentityRecoveryError("Review has no durable id and none could be recovered")

    async def complete_review(self, id_hint: Optional[str] = None) -> str:
        """
        Finalize the review.

        Args:
            id_hint: Id from an out-of-band reference (e.g. a resumed-session
                link), used only if the in-memory session has none

        Returns:
            The durable id of the completed review

        Raises:
            PreconditionError: required steps incomplete, or review cancelled or
                on hold
            IdentityRecoveryError: no durable id could be resolved
            PersistenceError: the gateway call failed
        """
        session = self.session
        if session.status == SessionStatus.COMPLETED and session.id is not None:
            return session.id
        if session.status == SessionStatus.CANCELLED:
            raise PreconditionError("A cancelled review cannot be completed")
        if session.status == SessionStatus.ON_HOLD:
            raise PreconditionError("An on-hold review must be resumed before completion")
        if not steps.can_complete(session):
            raise PreconditionError("Steps 0-3 must be completed before finishing the review")

        session_id = await self._resolve_identity(id_hint)
        session = self.session

        async with self._save_lock:
            await self._upsert(session)
            completed = await self._call("complete", self.gateway.complete(session_id))
            session.status = SessionStatus.COMPLETED
            session.completed_at = completed.completed_at or datetime.utcnow()

        logger.info("Completed review %s", session_id)
        return session_id

    async def cancel_review(self) -> None:
        """Cancel the review. Calling it again has no further effect."""
        session = self.session
        if session.status == SessionStatus.CANCELLED:
            return
        if session.status == SessionStatus.COMPLETED:
            raise PreconditionError("A completed review cannot be cancelled")

        await self._await_identity()
        async with self._save_lock:
            if session.status == SessionStatus.CANCELLED:
                return
            if session.id is not None:
                await self._call("cancel", self.gateway.cancel(session.id))
            session.status = SessionStatus.CANCELLED

        logger.info("Cancelled review %s", session.id)

    async def hold_review(self) -> None:
        """Pause an in-progress review."""
        session = self._editable()
        await self._await_identity()
        async with self._save_lock:
            session.status = SessionStatus.ON_HOLD
            if session.id is not None:
                try:
                    await self._upsert(session)
                except PersistenceError:
                    session.status = SessionStatus.IN_PROGRESS
                    raise
        logger.info("Review %s put on hold", session.id)

    async def resume_review(self) -> None:
        """Return an on-hold review to in progress."""
        session = self.session
        if session.status != SessionStatus.ON_HOLD:
            raise PreconditionError(f"Review is {session.status.value}, not on hold")

        existing = await self._call(
            "load_in_progress", self.gateway.load_in_progress(session.patient_id)
        )
        if existing is not None and existing.id != session.id:
            raise ConflictError(
                f"Patient {session.patient_id} already has review {existing.id} in progress",
                session_id=existing.id,
            )

        async with self._save_lock:
            session.status = SessionStatus.IN_PROGRESS
            if session.id is not None:
                try:
                    await self._upsert(session)
                except PersistenceError:
                    session.status = SessionStatus.ON_HOLD
                    raise
        logger.info("Review %s resumed", session.id)
