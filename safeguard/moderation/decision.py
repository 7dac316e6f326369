"""
Decision engine.

Maps an aggregated violation set to an action through a single ordered rule
table. First matching rule wins. Severity dominates count; count only
matters to escalate several medium findings past a plain review.
"""
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple

from safeguard.core.logging import get_logger
from safeguard.moderation.models import ContentViolation, ModerationAction, Severity

logger = get_logger("moderation.decision")


@dataclass(frozen=True)
class Decision:
    """Outcome of the decision engine."""
    action: ModerationAction
    confidence: float
    requires_manual_review: bool
    rule: str


@dataclass(frozen=True)
class DecisionRule:
    name: str
    applies: Callable[[Sequence[ContentViolation]], bool]
    action: ModerationAction
    confidence: Callable[[Sequence[ContentViolation]], float]
    requires_manual_review: bool


def _at(severity: Severity, violations: Sequence[ContentViolation]) -> List[float]:
    return [v.confidence for v in violations if v.severity == severity]


def _approve_confidence(violations: Sequence[ContentViolation]) -> float:
    low = _at(Severity.LOW, violations)
    return min(low) if low else 1.0


DECISION_RULES: Tuple[DecisionRule, ...] = (
    # The critical path is the governance here, not a human queue
    DecisionRule(
        name="critical",
        applies=lambda vs: bool(_at(Severity.CRITICAL, vs)),
        action=ModerationAction.REJECT,
        confidence=lambda vs: max(_at(Severity.CRITICAL, vs)),
        requires_manual_review=False,
    ),
    DecisionRule(
        name="high",
        applies=lambda vs: bool(_at(Severity.HIGH, vs)),
        action=ModerationAction.REVIEW,
        confidence=lambda vs: max(_at(Severity.HIGH, vs)),
        requires_manual_review=True,
    ),
    DecisionRule(
        name="multiple_medium",
        applies=lambda vs: len(_at(Severity.MEDIUM, vs)) >= 2,
        action=ModerationAction.QUARANTINE,
        confidence=lambda vs: max(_at(Severity.MEDIUM, vs)),
        requires_manual_review=True,
    ),
    DecisionRule(
        name="single_medium",
        applies=lambda vs: len(_at(Severity.MEDIUM, vs)) == 1,
        action=ModerationAction.REVIEW,
        confidence=lambda vs: _at(Severity.MEDIUM, vs)[0],
        requires_manual_review=True,
    ),
    DecisionRule(
        name="low_or_none",
        applies=lambda vs: True,
        action=ModerationAction.APPROVE,
        confidence=_approve_confidence,
        requires_manual_review=False,
    ),
)


def decide(violations: Sequence[ContentViolation]) -> Decision:
    """
    Determine the action for a violation set.

    Pure and deterministic: the same violations always give the same decision.

    Args:
        violations: Aggregated violations (may be empty)

    Returns:
        Decision with action, confidence, manual-review flag and the rule that fired
    """
    for rule in DECISION_RULES:
        if rule.applies(violations):
            decision = Decision(
                action=rule.action,
                confidence=rule.confidence(violations),
                requires_manual_review=rule.requires_manual_review,
                rule=rule.name,
            )
            logger.debug(
                f"Rule '{rule.name}' -> {decision.action.value} "
                f"({decision.confidence:.3f}) over {len(violations)} violations"
            )
            return decision

    # Unreachable: the last rule always applies
    raise RuntimeError("No decision rule applied")
