"""
Medication and patient-context models.

GOVERNANCE:
- Medication lists are owned by the review; the rule engine reads them only
"""

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class MedicationCategory(str, Enum):
    """Where the medication came from."""

    PRESCRIBED = "prescribed"
    OTC = "otc"
    HERBAL = "herbal"
    SUPPLEMENT = "supplement"


class Strength(BaseModel):
    """Strength of a single dosage unit."""

    value: float
    unit: str


class Instructions(BaseModel):
    """Directions for use as written on the label."""

    dose: str  # free text, e.g. '500', '80mg', 'as directed'
    frequency: str
    route: str
    duration: Optional[str] = None


class MedicationEntry(BaseModel):
    """A single medication on the patient's list."""

    id: Optional[str] = None
    drug_name: str = Field(..., min_length=1)
    generic_name: Optional[str] = None
    strength: Strength
    dosage_form: str
    instructions: Instructions
    category: MedicationCategory = MedicationCategory.PRESCRIBED
    start_date: date
    end_date: Optional[date] = None
    indication: Optional[str] = None
    adherence_score: Optional[int] = Field(default=None, ge=0, le=10)
    adherence_barriers: list[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("drug_name")
    @classmethod
    def validate_drug_name(cls, v: str) -> str:
        """Reject names that are only whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("Drug name is required")
        return v


class PatientContext(BaseModel):
    """Clinical context of the selected patient."""

    patient_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    allergies: list[str] = Field(default_factory=list)
    conditions: list[str] = Field(default_factory=list)
