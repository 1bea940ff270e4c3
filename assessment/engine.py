"""
Rule assessment engine.

Screens a medication list against the static rule tables and returns drug
therapy problems grouped by check.

GOVERNANCE:
- Deterministic: identical inputs give identical findings (ids aside)
- Findings are suggestions for pharmacist review, never auto-applied
- Malformed entries are skipped, never fatal to the run
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

import pydantic

from api.models.medication import MedicationEntry, PatientContext
from api.models.problem import (
    DrugTherapyProblem,
    EvidenceLevel,
    ProblemCategory,
    ProblemType,
    Severity,
)
from assessment import rules
from assessment.errors import RuleEngineError

logger = logging.getLogger(__name__)

# Leading decimal number, as a label would start a dose ('80', '2.5mg', '.5 tab')
_DOSE_PATTERN = re.compile(r"^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+))")


class AssessmentCheck(str, Enum):
    """Individual checks, in run order."""

    INTERACTIONS = "interactions"
    DUPLICATES = "duplicates"
    CONTRAINDICATIONS = "contraindications"
    DOSING = "dosing"
    ADHERENCE = "adherence"


@dataclass
class AssessmentResult:
    """Findings of one engine run."""

    by_check: dict[AssessmentCheck, list[DrugTherapyProblem]] = field(
        default_factory=dict
    )
    skipped: list[int] = field(default_factory=list)  # indices of malformed entries

    @property
    def problems(self) -> list[DrugTherapyProblem]:
        return [p for problems in self.by_check.values() for p in problems]

    def severity_counts(self) -> dict[str, int]:
        counts = Counter(p.severity.value for p in self.problems)
        return {severity.value: counts.get(severity.value, 0) for severity in Severity}


def parse_dose(dose: Optional[str]) -> Optional[float]:
    """Leading numeric value of a dose string, or None if it has none."""
    if not dose:
        return None
    match = _DOSE_PATTERN.match(dose)
    if match is None:
        return None
    return float(match.group(1))


def _coerce_entry(index: int, raw: Any) -> MedicationEntry:
    if isinstance(raw, MedicationEntry):
        return raw
    try:
        return MedicationEntry.model_validate(raw)
    except pydantic.ValidationError as e:
        raise RuleEngineError(f"Malformed medication entry: {e}", entry_index=index) from e


def coerce_medications(
    medications: Optional[Sequence[Any]],
) -> tuple[list[MedicationEntry], list[int]]:
    """
    Validate raw medication input.

    Args:
        medications: MedicationEntry models or mappings

    Returns:
        (valid entries, indices of skipped entries)

    Raises:
        RuleEngineError: if the medication list itself is missing
    """
    if medications is None:
        raise RuleEngineError("Medication list is required")

    entries: list[MedicationEntry] = []
    skipped: list[int] = []
    for index, raw in enumerate(medications):
        try:
            entries.append(_coerce_entry(index, raw))
        except RuleEngineError as e:
            logger.warning("Skipping medication entry %d: %s", index, e)
            skipped.append(index)
    return entries, skipped


def _problem(
    category: ProblemCategory,
    problem_type: ProblemType,
    severity: Severity,
    evidence: EvidenceLevel,
    subcategory: str,
    description: str,
    clinical_significance: str,
    affected: Iterable[str],
    related_conditions: Iterable[str] = (),
    risk_factors: Iterable[str] = (),
) -> DrugTherapyProblem:
    return DrugTherapyProblem(
        category=category,
        subcategory=subcategory,
        type=problem_type,
        severity=severity,
        evidence_level=evidence,
        description=description,
        clinical_significance=clinical_significance,
        affected_medications=list(affected),
        related_conditions=list(related_conditions),
        risk_factors=list(risk_factors),
    )


def check_interactions(medications: Sequence[Any]) -> list[DrugTherapyProblem]:
    """Flag every unordered pair that matches the interaction table."""
    entries, _ = coerce_medications(medications)
    problems = []
    for i, med1 in enumerate(entries):
        for med2 in entries[i + 1:]:
            if not rules.is_interacting_pair(med1.drug_name, med2.drug_name):
                continue
            problems.append(
                _problem(
                    ProblemCategory.SAFETY,
                    ProblemType.INTERACTION,
                    Severity.MODERATE,
                    EvidenceLevel.PROBABLE,
                    subcategory="Drug-Drug Interaction",
                    description=(
                        f"Potential interaction between {med1.drug_name} "
                        f"and {med2.drug_name}"
                    ),
                    clinical_significance=(
                        "Monitor for increased side effects or reduced efficacy"
                    ),
                    affected=[med1.drug_name, med2.drug_name],
                    risk_factors=["Multiple medications", "Concurrent use"],
                )
            )
    return problems


def check_duplicate_therapy(medications: Sequence[Any]) -> list[DrugTherapyProblem]:
    """One problem per therapeutic class with two or more members."""
    entries, _ = coerce_medications(medications)
    classes: dict[str, list[MedicationEntry]] = {}
    for med in entries:
        classes.setdefault(rules.get_drug_class(med.drug_name), []).append(med)

    problems = []
    for drug_class, members in classes.items():
        if drug_class == rules.OTHER_CLASS or len(members) < 2:
            continue
        problems.append(
            _problem(
                ProblemCategory.EFFECTIVENESS,
                ProblemType.DUPLICATION,
                Severity.MINOR,
                EvidenceLevel.DEFINITE,
                subcategory="Duplicate Therapy",
                description=(
                    f"Multiple medications from the same therapeutic class: {drug_class}"
                ),
                clinical_significance="Consider consolidating therapy or adjusting doses",
                affected=[m.drug_name for m in members],
                risk_factors=["Polypharmacy", "Multiple prescribers"],
            )
        )
    return problems


def check_contraindications(
    medications: Sequence[Any],
    allergies: Optional[Sequence[str]] = None,
    conditions: Optional[Sequence[str]] = None,
) -> list[DrugTherapyProblem]:
    """Flag allergy and disease-state contraindications."""
    entries, _ = coerce_medications(medications)
    allergies = [a for a in (allergies or []) if a and a.strip()]
    conditions = [c for c in (conditions or []) if c and c.strip()]

    problems = []
    for med in entries:
        matched_allergies = [a for a in allergies if rules.matches_allergy(med.drug_name, a)]
        if matched_allergies:
            problems.append(
                _problem(
                    ProblemCategory.SAFETY,
                    ProblemType.CONTRAINDICATION,
                    Severity.CRITICAL,
                    EvidenceLevel.DEFINITE,
                    subcategory="Allergy Contraindication",
                    description=(
                        f"Patient has documented allergy relevant to {med.drug_name} "
                        f"({', '.join(matched_allergies)})"
                    ),
                    clinical_significance=(
                        "Discontinue medication immediately to prevent allergic reaction"
                    ),
                    affected=[med.drug_name],
                    related_conditions=matched_allergies,
                    risk_factors=["Known allergy", "Previous adverse reaction"],
                )
            )

        matched_conditions = rules.contraindicated_conditions(med.drug_name, conditions)
        if matched_conditions:
            problems.append(
                _problem(
                    ProblemCategory.SAFETY,
                    ProblemType.CONTRAINDICATION,
                    Severity.MAJOR,
                    EvidenceLevel.PROBABLE,
                    subcategory="Disease Contraindication",
                    description=(
                        f"{med.drug_name} is contraindicated with patient's condition"
                    ),
                    clinical_significance="Consider alternative therapy or close monitoring",
                    affected=[med.drug_name],
                    related_conditions=matched_conditions,
                    risk_factors=["Comorbid conditions"],
                )
            )
    return problems


def check_dosing(medications: Sequence[Any]) -> list[DrugTherapyProblem]:
    """Compare numeric doses with the per-drug thresholds."""
    entries, _ = coerce_medications(medications)
    problems = []
    for med in entries:
        dose = parse_dose(med.instructions.dose)
        if dose is None:
            continue  # qualitative dosing, e.g. 'as directed'

        high = rules.high_dose_threshold(med.drug_name)
        if high is not None and dose > high:
            problems.append(
                _problem(
                    ProblemCategory.SAFETY,
                    ProblemType.DOSE_TOO_HIGH,
                    Severity.MAJOR,
                    EvidenceLevel.PROBABLE,
                    subcategory="High Dose",
                    description=(
                        f"{med.drug_name} dose may be too high: {med.instructions.dose}"
                    ),
                    clinical_significance="Monitor for dose-related adverse effects",
                    affected=[med.drug_name],
                    risk_factors=["High dose", "Patient age", "Renal function"],
                )
            )

        low = rules.low_dose_threshold(med.drug_name)
        if low is not None and dose < low:
            problems.append(
                _problem(
                    ProblemCategory.EFFECTIVENESS,
                    ProblemType.DOSE_TOO_LOW,
                    Severity.MODERATE,
                    EvidenceLevel.POSSIBLE,
                    subcategory="Subtherapeutic Dose",
                    description=(
                        f"{med.drug_name} dose may be too low: {med.instructions.dose}"
                    ),
                    clinical_significance="May not achieve therapeutic effect",
                    affected=[med.drug_name],
                    risk_factors=["Low dose", "Treatment failure"],
                )
            )
    return problems


def check_adherence(
    medications: Sequence[Any],
    default_score: int = 8,
    threshold: int = 7,
    poor_threshold: int = 4,
) -> list[DrugTherapyProblem]:
    """
    Flag poor adherence from per-medication scores (0-10).

    Args:
        medications: Medication entries
        default_score: Score assumed when none is documented
        threshold: Scores below this are a problem
        poor_threshold: Scores below this are a major problem

    Returns:
        One adherence problem per poorly adhered medication
    """
    entries, _ = coerce_medications(medications)
    problems = []
    for med in entries:
        score = med.adherence_score if med.adherence_score is not None else default_score
        if score >= threshold:
            continue
        problems.append(
            _problem(
                ProblemCategory.ADHERENCE,
                ProblemType.INAPPROPRIATE_ADHERENCE,
                Severity.MAJOR if score < poor_threshold else Severity.MODERATE,
                EvidenceLevel.PROBABLE,
                subcategory="Poor Adherence",
                description=f"Poor adherence to {med.drug_name} (Score: {score}/10)",
                clinical_significance=(
                    "May lead to treatment failure or disease progression"
                ),
                affected=[med.drug_name],
                risk_factors=med.adherence_barriers,
            )
        )
    return problems


def run_assessment(
    medications: Optional[Sequence[Any]],
    patient: Optional[PatientContext] = None,
    allergies: Optional[Sequence[str]] = None,
    conditions: Optional[Sequence[str]] = None,
) -> AssessmentResult:
    """
    Run the interaction, duplicate, contraindication and dosing checks.

    Allergies and conditions come from ``patient`` unless given explicitly.
    The adherence check is triggered separately (see check_adherence).
    """
    entries, skipped = coerce_medications(medications)
    if patient is not None:
        allergies = patient.allergies if allergies is None else allergies
        conditions = patient.conditions if conditions is None else conditions

    result = AssessmentResult(skipped=skipped)
    result.by_check[AssessmentCheck.INTERACTIONS] = check_interactions(entries)
    result.by_check[AssessmentCheck.DUPLICATES] = check_duplicate_therapy(entries)
    result.by_check[AssessmentCheck.CONTRAINDICATIONS] = check_contraindications(
        entries, allergies, conditions
    )
    result.by_check[AssessmentCheck.DOSING] = check_dosing(entries)

    logger.info(
        "Assessment found %d problems across %d medications (%d skipped)",
        len(result.problems),
        len(entries),
        len(skipped),
    )
    return result
