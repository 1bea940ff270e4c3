"""Reconcile a re-run of the engine against problems already on a review."""

from dataclasses import dataclass, field

from api.models.problem import DrugTherapyProblem, ProblemStatus


@dataclass
class Reconciliation:
    """Fresh findings split by whether the review already has them."""

    new: list[DrugTherapyProblem] = field(default_factory=list)
    existing: list[DrugTherapyProblem] = field(default_factory=list)
    stale: list[DrugTherapyProblem] = field(default_factory=list)


def reconcile(
    existing: list[DrugTherapyProblem],
    fresh: list[DrugTherapyProblem],
) -> Reconciliation:
    """
    Match fresh findings to existing problems by fingerprint.

    Args:
        existing: Problems already recorded on the review
        fresh: Output of the latest engine run

    Returns:
        new: fresh findings with no existing counterpart
        existing: existing problems the run confirmed
        stale: open automated problems the run no longer produces
    """
    known = {}
    for problem in existing:
        known.setdefault(problem.fingerprint, problem)

    result = Reconciliation()
    seen = set()
    for problem in fresh:
        fp = problem.fingerprint
        if fp in seen:
            continue
        seen.add(fp)
        if fp in known:
            result.existing.append(known[fp])
        else:
            result.new.append(problem)

    result.stale = [
        p
        for p in existing
        if p.is_automated
        and p.status != ProblemStatus.ADDRESSED
        and p.fingerprint not in seen
    ]
    return result
