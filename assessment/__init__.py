"""Clinical rule assessment."""

from assessment.engine import (
    AssessmentCheck,
    AssessmentResult,
    check_adherence,
    check_contraindications,
    check_dosing,
    check_duplicate_therapy,
    check_interactions,
    parse_dose,
    run_assessment,
)
from assessment.errors import RuleEngineError
from assessment.reconcile import Reconciliation, reconcile

__all__ = [
    "AssessmentCheck",
    "AssessmentResult",
    "RuleEngineError",
    "Reconciliation",
    "check_adherence",
    "check_contraindications",
    "check_dosing",
    "check_duplicate_therapy",
    "check_interactions",
    "parse_dose",
    "reconcile",
    "run_assessment",
]
