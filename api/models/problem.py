"""
Drug therapy problem models.

GOVERNANCE:
- Problems are never deleted, only status-transitioned
- Automated problems are suggestions until a pharmacist addresses them
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

SYSTEM_IDENTIFIER = "system"


class ProblemCategory(str, Enum):
    """Top-level problem category."""

    INDICATION = "indication"
    EFFECTIVENESS = "effectiveness"
    SAFETY = "safety"
    ADHERENCE = "adherence"


class ProblemType(str, Enum):
    """Closed set of problem types."""

    UNNECESSARY = "unnecessary"
    NEEDS_ADDITIONAL = "needsAdditional"
    WRONG_DRUG = "wrongDrug"
    DOSE_TOO_LOW = "doseTooLow"
    DOSE_TOO_HIGH = "doseTooHigh"
    ADVERSE_REACTION = "adverseReaction"
    INTERACTION = "interaction"
    DUPLICATION = "duplication"
    CONTRAINDICATION = "contraindication"
    INAPPROPRIATE_ADHERENCE = "inappropriateAdherence"
    MONITORING = "monitoring"


class Severity(str, Enum):
    """Clinical impact, most severe first."""

    CRITICAL = "critical"
    MAJOR = "major"
    MODERATE = "moderate"
    MINOR = "minor"


class EvidenceLevel(str, Enum):
    """Confidence in a causal relationship."""

    DEFINITE = "definite"
    PROBABLE = "probable"
    POSSIBLE = "possible"
    UNLIKELY = "unlikely"


class ProblemStatus(str, Enum):
    """Problem lifecycle status."""

    IDENTIFIED = "identified"
    ADDRESSED = "addressed"
    MONITORING = "monitoring"


class ProblemResolution(BaseModel):
    """How a problem was addressed."""

    action: str
    outcome: str
    resolved_at: datetime = Field(default_factory=datetime.utcnow)


class DrugTherapyProblem(BaseModel):
    """A classified issue in the patient's regimen."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    category: ProblemCategory
    subcategory: Optional[str] = None
    type: ProblemType
    severity: Severity
    evidence_level: EvidenceLevel
    description: str
    clinical_significance: str = ""
    affected_medications: list[str] = Field(default_factory=list)
    related_conditions: list[str] = Field(default_factory=list)
    risk_factors: list[str] = Field(default_factory=list)
    status: ProblemStatus = ProblemStatus.IDENTIFIED
    identified_by: str = SYSTEM_IDENTIFIER
    identified_at: datetime = Field(default_factory=datetime.utcnow)
    resolution: Optional[ProblemResolution] = None

    @property
    def fingerprint(self) -> tuple[str, str, tuple[str, ...]]:
        """Identity of the finding independent of its id."""
        meds = tuple(sorted({m.strip().lower() for m in self.affected_medications}))
        return (self.category.value, self.type.value, meds)

    @property
    def is_automated(self) -> bool:
        return self.identified_by == SYSTEM_IDENTIFIER
