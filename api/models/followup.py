"""Follow-up scheduling models."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from api.models.intervention import Priority


class FollowUpType(str, Enum):
    PHONE_CALL = "phone_call"
    APPOINTMENT = "appointment"
    LAB_REVIEW = "lab_review"
    ADHERENCE_CHECK = "adherence_check"
    OUTCOME_ASSESSMENT = "outcome_assessment"


class FollowUpStatus(str, Enum):
    """Follow-up status. Scheduled and rescheduled follow-ups are open."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    MISSED = "missed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class FollowUpOutcome(str, Enum):
    SUCCESSFUL = "successful"
    PARTIALLY_SUCCESSFUL = "partially_successful"
    UNSUCCESSFUL = "unsuccessful"


class FollowUp(BaseModel):
    """A scheduled activity verifying an intervention's effect."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: FollowUpType
    priority: Priority = Priority.MEDIUM
    status: FollowUpStatus = FollowUpStatus.SCHEDULED
    scheduled_date: datetime
    description: str = ""
    intervention_id: Optional[str] = None
    outcome: Optional[FollowUpOutcome] = None
    outcome_notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    rescheduled_reason: Optional[str] = None
