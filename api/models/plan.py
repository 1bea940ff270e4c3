"""Therapy plan models (plan development step)."""

from typing import Optional

from pydantic import BaseModel, Field

from api.models.intervention import Priority


class TherapyRecommendation(BaseModel):
    """A proposed change to therapy."""

    type: str  # 'discontinue', 'adjust_dose', 'switch_therapy', 'add_therapy', ...
    medication: Optional[str] = None
    rationale: str
    priority: Priority = Priority.MEDIUM
    problem_id: Optional[str] = None


class MonitoringParameter(BaseModel):
    parameter: str
    frequency: str
    target_value: Optional[str] = None


class TherapyGoal(BaseModel):
    description: str
    target_date: Optional[str] = None
    achieved: bool = False


class TherapyPlan(BaseModel):
    """Plan assembled during plan development."""

    recommendations: list[TherapyRecommendation] = Field(default_factory=list)
    monitoring: list[MonitoringParameter] = Field(default_factory=list)
    goals: list[TherapyGoal] = Field(default_factory=list)
    notes: Optional[str] = None
