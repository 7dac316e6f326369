"""
Violation aggregator.

Concatenates the violations of every detector run, in dispatch order.
No deduplication: two detectors flagging the same concern are independent
corroboration and both stay in the record.
"""
from typing import Iterable, List

from safeguard.detectors.base import DetectorRun
from safeguard.moderation.models import ContentViolation


def aggregate(runs: Iterable[DetectorRun]) -> List[ContentViolation]:
    """Merge per-detector violation lists into one ordered collection."""
    violations: List[ContentViolation] = []
    for run in runs:
        for violation in run.violations:
            if violation.detector is None:
                violation = violation.model_copy(update={"detector": run.detector})
            violations.append(violation)
    return violations
