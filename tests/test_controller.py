"""Tests for the review controller state machine."""

import asyncio
import logging

import pytest

from api.models.session import SessionStatus
from config import Settings
from storage.sessions import InMemorySessionGateway
from workflow import steps
from workflow.controller import ReviewController
from workflow.errors import (
    ConflictError,
    IdentityRecoveryError,
    PersistenceError,
    PreconditionError,
    ReviewNotFoundError,
    ValidationError,
)


class FlakyGateway(InMemorySessionGateway):
    """Fails the next ``fail_upserts`` upserts."""

    def __init__(self):
        super().__init__()
        self.fail_upserts = 0
        self.fail_creates = False
        self.upserts = 0

    async def create(self, patient_id):
        if self.fail_creates:
            raise ConnectionError("store unavailable")
        return await super().create(patient_id)

    async def upsert(self, session):
        self.upserts += 1
        if self.fail_upserts:
            self.fail_upserts -= 1
            raise ConnectionError("store unavailable")
        return await super().upsert(session)


class GatedGateway(InMemorySessionGateway):
    """Holds create and upsert calls until their gate is set."""

    def __init__(self):
        super().__init__()
        self.create_released = asyncio.Event()
        self.upsert_released = asyncio.Event()
        self.create_released.set()
        self.upsert_released.set()
        self.upserts_started = 0

    async def create(self, patient_id):
        await self.create_released.wait()
        return await super().create(patient_id)

    async def upsert(self, session):
        self.upserts_started += 1
        await self.upsert_released.wait()
        return await super().upsert(session)


async def _ready_review(controller, patient):
    """Create a review with steps 0-3 complete."""
    await controller.create_review(patient.patient_id, patient)
    for index in range(4):
        controller.complete_step(index)
    return controller.session


def _restored_snapshot(patient):
    snapshot = steps.new_session(patient.patient_id, patient=patient)
    for index in range(4):
        steps.complete_step(snapshot, index)
    return snapshot


class TestCreateReview:
    """Test review creation."""

    async def test_create_assigns_durable_id(self, controller, gateway, patient):
        session = await controller.create_review(patient.patient_id, patient)

        assert session.id is not None
        assert session.review_number.startswith("MTR-")
        stored = await gateway.load(session.id)
        assert stored.patient_id == patient.patient_id

    async def test_second_in_progress_review_conflicts(
        self, controller, gateway, settings, patient
    ):
        first = await controller.create_review(patient.patient_id, patient)
        other = ReviewController(gateway, settings)

        with pytest.raises(ConflictError) as exc_info:
            await other.create_review(patient.patient_id, patient)

        assert exc_info.value.session_id == first.id
        assert not other.has_session

    async def test_concurrent_creates_for_one_patient(self, gateway, settings, patient):
        first = ReviewController(gateway, settings)
        second = ReviewController(gateway, settings)

        results = await asyncio.gather(
            first.create_review(patient.patient_id, patient),
            second.create_review(patient.patient_id, patient),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        created = [r for r in results if not isinstance(r, Exception)]
        assert len(conflicts) == 1
        assert len(created) == 1
        assert conflicts[0].session_id == created[0].id
        assert gateway.count_by_status()["in_progress"] == 1
        assert [first.has_session, second.has_session].count(True) == 1

    async def test_completed_review_allows_a_new_one(
        self, controller, gateway, settings, patient
    ):
        await _ready_review(controller, patient)
        await controller.complete_review()

        other = ReviewController(gateway, settings)
        session = await other.create_review(patient.patient_id, patient)

        assert session.id != controller.session.id

    async def test_patient_context_must_match(self, controller, patient):
        with pytest.raises(ValidationError):
            await controller.create_review("someone-else", patient)

    async def test_failed_create_keeps_unsaved_session(self, settings, patient):
        gateway = FlakyGateway()
        gateway.fail_creates = True
        controller = ReviewController(gateway, settings)

        with pytest.raises(PersistenceError):
            await controller.create_review(patient.patient_id, patient)

        assert controller.has_session
        assert controller.session.id is None

    async def test_load_unknown_review(self, controller):
        with pytest.raises(ReviewNotFoundError):
            await controller.load_review("missing")


class TestCompleteReview:
    """Test review completion."""

    @pytest.mark.parametrize("missing", range(4))
    async def test_required_steps_must_be_complete(
        self, controller, gateway, patient, missing
    ):
        session = await controller.create_review(patient.patient_id, patient)
        for index in range(4):
            if index != missing:
                controller.complete_step(index)

        with pytest.raises(PreconditionError):
            await controller.complete_review()

        assert session.status == SessionStatus.IN_PROGRESS
        assert (await gateway.load(session.id)).status == SessionStatus.IN_PROGRESS

    async def test_complete_persists_and_finalizes(self, controller, gateway, patient):
        session = await _ready_review(controller, patient)

        session_id = await controller.complete_review()

        assert session_id == session.id
        assert session.status == SessionStatus.COMPLETED
        assert session.completed_at is not None
        stored = await gateway.load(session_id)
        assert stored.status == SessionStatus.COMPLETED
        assert stored.step(3).completed

    async def test_complete_twice_returns_same_id(self, controller, patient):
        await _ready_review(controller, patient)

        first = await controller.complete_review()
        second = await controller.complete_review()

        assert first == second

    async def test_cancelled_review_cannot_complete(self, controller, patient):
        await _ready_review(controller, patient)
        await controller.cancel_review()

        with pytest.raises(PreconditionError):
            await controller.complete_review()

    async def test_on_hold_review_cannot_complete(self, controller, gateway, patient):
        session = await _ready_review(controller, patient)
        await controller.hold_review()

        with pytest.raises(PreconditionError):
            await controller.complete_review()

        assert session.status == SessionStatus.ON_HOLD
        assert (await gateway.load(session.id)).status == SessionStatus.ON_HOLD

        await controller.resume_review()
        assert await controller.complete_review() == session.id

    async def test_completed_review_is_read_only(self, controller, patient, make_med):
        await _ready_review(controller, patient)
        await controller.complete_review()

        with pytest.raises(PreconditionError):
            controller.add_medication(make_med("Metformin"))


class TestIdentityRecovery:
    """Test resolving the durable id at completion."""

    async def test_restored_snapshot_recovers_from_hint(self, controller, gateway, patient):
        stored = await gateway.create(patient.patient_id)
        controller.restore(_restored_snapshot(patient))

        session_id = await controller.complete_review(id_hint=stored.id)

        assert session_id == stored.id
        assert controller.session.review_number == stored.review_number
        assert (await gateway.load(stored.id)).status == SessionStatus.COMPLETED

    async def test_no_id_and_no_hint_fails(self, controller, patient):
        controller.restore(_restored_snapshot(patient))

        with pytest.raises(IdentityRecoveryError):
            await controller.complete_review()

        assert controller.session.status == SessionStatus.IN_PROGRESS

    async def test_hint_for_another_patient_fails(self, controller, gateway, patient):
        stored = await gateway.create("patient-999")
        controller.restore(_restored_snapshot(patient))

        with pytest.raises(IdentityRecoveryError):
            await controller.complete_review(id_hint=stored.id)

    async def test_unknown_hint_fails(self, controller, patient):
        controller.restore(_restored_snapshot(patient))

        with pytest.raises(IdentityRecoveryError):
            await controller.complete_review(id_hint="missing")

    async def test_failed_create_without_hint_fails(self, settings, patient):
        gateway = FlakyGateway()
        gateway.fail_creates = True
        controller = ReviewController(gateway, settings)
        with pytest.raises(PersistenceError):
            await controller.create_review(patient.patient_id, patient)
        for index in range(4):
            controller.complete_step(index)

        with pytest.raises(IdentityRecoveryError):
            await controller.complete_review()

    async def test_pending_create_resolves_before_completion(self, settings, patient):
        gateway = GatedGateway()
        gateway.create_released.clear()
        controller = ReviewController(gateway, settings)

        creating = asyncio.create_task(controller.create_review(patient.patient_id, patient))
        while not controller.has_session:
            await asyncio.sleep(0)
        for index in range(4):
            controller.complete_step(index)
        assert controller.session.id is None

        completing = asyncio.create_task(controller.complete_review())
        await asyncio.sleep(0)
        gateway.create_released.set()

        session_id = await completing
        await creating

        assert session_id is not None
        assert session_id == controller.session.id
        assert (await gateway.load(session_id)).status == SessionStatus.COMPLETED


class TestCancelReview:
    """Test review cancellation."""

    async def test_cancel_is_idempotent(self, controller, gateway, patient):
        session = await controller.create_review(patient.patient_id, patient)

        await controller.cancel_review()
        await controller.cancel_review()

        assert session.status == SessionStatus.CANCELLED
        assert (await gateway.load(session.id)).status == SessionStatus.CANCELLED

    async def test_completed_review_cannot_be_cancelled(self, controller, patient):
        await _ready_review(controller, patient)
        await controller.complete_review()

        with pytest.raises(PreconditionError):
            await controller.cancel_review()

        assert controller.session.status == SessionStatus.COMPLETED


class TestHoldAndResume:
    """Test pausing a review."""

    async def test_hold_then_resume(self, controller, gateway, patient):
        session = await controller.create_review(patient.patient_id, patient)

        await controller.hold_review()
        assert (await gateway.load(session.id)).status == SessionStatus.ON_HOLD

        await controller.resume_review()
        assert (await gateway.load(session.id)).status == SessionStatus.IN_PROGRESS

    async def test_resume_conflicts_with_newer_review(
        self, controller, gateway, settings, patient
    ):
        await controller.create_review(patient.patient_id, patient)
        await controller.hold_review()
        newer = ReviewController(gateway, settings)
        await newer.create_review(patient.patient_id, patient)

        with pytest.raises(ConflictError):
            await controller.resume_review()

        assert controller.session.status == SessionStatus.ON_HOLD

    async def test_failed_hold_reverts_status(self, settings, patient):
        gateway = FlakyGateway()
        controller = ReviewController(gateway, settings)
        await controller.create_review(patient.patient_id, patient)
        gateway.fail_upserts = 1

        with pytest.raises(PersistenceError):
            await controller.hold_review()

        assert controller.session.status == SessionStatus.IN_PROGRESS


class TestAutosave:
    """Test auto-save firings."""

    async def test_skipped_without_session(self, controller):
        assert await controller.autosave_tick() is False

    async def test_skipped_when_disabled(self, patient):
        gateway = FlakyGateway()
        controller = ReviewController(gateway, Settings(autosave_enabled=False))
        await controller.create_review(patient.patient_id, patient)

        assert await controller.autosave_tick() is False
        assert gateway.upserts == 0

    async def test_skipped_without_durable_id(self, patient, settings):
        gateway = FlakyGateway()
        controller = ReviewController(gateway, settings)
        controller.restore(steps.new_session(patient.patient_id, patient=patient))

        assert await controller.autosave_tick() is False
        assert gateway.upserts == 0

    @pytest.mark.parametrize("close", ["cancel", "complete", "hold"])
    async def test_skipped_once_review_leaves_progress(self, settings, patient, close):
        gateway = FlakyGateway()
        controller = ReviewController(gateway, settings)
        await _ready_review(controller, patient)
        if close == "cancel":
            await controller.cancel_review()
        elif close == "complete":
            await controller.complete_review()
        else:
            await controller.hold_review()
        upserts = gateway.upserts

        assert await controller.autosave_tick() is False
        assert gateway.upserts == upserts

    async def test_saves_current_state(self, controller, gateway, patient, make_med):
        session = await controller.create_review(patient.patient_id, patient)
        controller.add_medication(make_med("Metformin"))

        assert await controller.autosave_tick() is True

        assert controller.last_saved_at is not None
        stored = await gateway.load(session.id)
        assert [m.drug_name for m in stored.medications] == ["Metformin"]

    async def test_failure_is_logged_and_retried(self, settings, patient, caplog):
        gateway = FlakyGateway()
        controller = ReviewController(gateway, settings)
        await controller.create_review(patient.patient_id, patient)
        gateway.fail_upserts = 1

        with caplog.at_level(logging.WARNING, logger="workflow.controller"):
            assert await controller.autosave_tick() is False
        assert "Auto-save" in caplog.text
        assert controller.last_saved_at is None

        assert await controller.autosave_tick() is True
        assert controller.last_saved_at is not None

    async def test_skipped_while_save_in_flight(self, settings, patient):
        gateway = GatedGateway()
        controller = ReviewController(gateway, settings)
        await controller.create_review(patient.patient_id, patient)
        gateway.upsert_released.clear()

        saving = asyncio.create_task(controller.save())
        await asyncio.sleep(0)

        assert await controller.autosave_tick() is False

        gateway.upsert_released.set()
        await saving
        assert gateway.upserts_started == 1


class TestManualSave:
    """Test explicit saves."""

    async def test_failure_is_reported(self, settings, patient):
        gateway = FlakyGateway()
        controller = ReviewController(gateway, settings)
        await controller.create_review(patient.patient_id, patient)
        gateway.fail_upserts = 1

        with pytest.raises(PersistenceError):
            await controller.save()

        assert controller.has_session
        assert controller.last_saved_at is None

    async def test_requires_durable_id(self, controller, patient):
        controller.restore(steps.new_session(patient.patient_id, patient=patient))

        with pytest.raises(PreconditionError):
            await controller.save()

    async def test_waits_for_in_flight_autosave(self, settings, patient):
        gateway = GatedGateway()
        controller = ReviewController(gateway, settings)
        await controller.create_review(patient.patient_id, patient)
        gateway.upsert_released.clear()

        ticking = asyncio.create_task(controller.autosave_tick())
        await asyncio.sleep(0)
        saving = asyncio.create_task(controller.save())
        await asyncio.sleep(0)

        assert gateway.upserts_started == 1

        gateway.upsert_released.set()
        assert await ticking is True
        await saving
        assert gateway.upserts_started == 2


class TestAssessment:
    """Test running the engine through the controller."""

    async def test_rerun_does_not_duplicate_problems(self, controller, patient, make_med):
        await controller.create_review(patient.patient_id, patient)
        controller.add_medication(make_med("Lisinopril", dose="80"))
        controller.add_medication(make_med("Amoxicillin"))

        _, first = controller.run_assessment()
        _, second = controller.run_assessment()

        assert len(first.new) == 2
        assert second.new == []
        assert len(second.existing) == 2
        assert len(controller.session.problems) == 2

    async def test_adherence_uses_configured_thresholds(self, gateway, patient, make_med):
        controller = ReviewController(gateway, Settings(adherence_threshold=10))
        await controller.create_review(patient.patient_id, patient)
        controller.add_medication(make_med("Metformin", adherence_score=9))

        problems, merged = controller.run_adherence_check()

        assert len(problems) == 1
        assert merged.new == problems
