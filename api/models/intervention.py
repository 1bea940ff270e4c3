"""
Pharmacist intervention models.

GOVERNANCE:
- An outcome is recorded exactly once per intervention
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class InterventionType(str, Enum):
    RECOMMENDATION = "recommendation"
    COUNSELING = "counseling"
    MONITORING = "monitoring"
    COMMUNICATION = "communication"
    EDUCATION = "education"


class InterventionOutcome(str, Enum):
    """Prescriber/patient response to the intervention."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MODIFIED = "modified"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Urgency(str, Enum):
    IMMEDIATE = "immediate"
    WITHIN_24H = "within_24h"
    WITHIN_WEEK = "within_week"
    ROUTINE = "routine"


class Intervention(BaseModel):
    """A documented pharmacist action."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: InterventionType
    category: str = Field(..., min_length=1)  # e.g. 'medication_change'
    description: str = ""
    target_problem_id: Optional[str] = None
    outcome: InterventionOutcome = InterventionOutcome.PENDING
    outcome_details: Optional[str] = None
    follow_up_required: bool = False
    follow_up_completed: bool = False
    priority: Priority = Priority.MEDIUM
    urgency: Urgency = Urgency.ROUTINE
    performed_at: datetime = Field(default_factory=datetime.utcnow)
