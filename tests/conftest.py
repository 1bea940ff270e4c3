"""Shared fixtures."""

from datetime import date

import pytest

from api.models.medication import MedicationEntry, PatientContext
from config import Settings
from storage.sessions import InMemorySessionGateway
from workflow.controller import ReviewController


@pytest.fixture
def settings():
    return Settings(autosave_enabled=True, autosave_interval_seconds=0.01)


@pytest.fixture
def gateway():
    return InMemorySessionGateway()


@pytest.fixture
def controller(gateway, settings):
    return ReviewController(gateway, settings)


@pytest.fixture
def patient():
    return PatientContext(
        patient_id="patient-123",
        name="Test Patient",
        allergies=["Penicillin"],
        conditions=["Hypertension"],
    )


@pytest.fixture
def make_med():
    """Factory for medication entries with sensible defaults."""

    def _make(drug_name: str, dose: str = "10", **overrides) -> MedicationEntry:
        data = {
            "drug_name": drug_name,
            "strength": {"value": 10, "unit": "mg"},
            "dosage_form": "tablet",
            "instructions": {"dose": dose, "frequency": "once daily", "route": "oral"},
            "start_date": date(2024, 1, 1),
            "indication": "Maintenance",
        }
        data.update(overrides)
        return MedicationEntry(**data)

    return _make
