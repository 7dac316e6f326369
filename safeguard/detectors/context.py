"""
User-context risk check.

Local and synchronous: no external call, always run. Turns account
signals (age, verification, trust, report history) and low-confidence
detector findings into violations that push content toward human review.
"""
from typing import Iterable, List

from safeguard.core.config import ModerationConfig
from safeguard.detectors.base import USER_CONTEXT_CHECK, DetectorRun
from safeguard.moderation.models import (
    ContentSubmission,
    ContentViolation,
    Severity,
    VerificationLevel,
    ViolationType,
)


class UserContextCheck:
    """Risk signals derived from the submitting user's context."""

    name = USER_CONTEXT_CHECK

    def __init__(self, config: ModerationConfig):
        self.config = config

    def run(
        self,
        submission: ContentSubmission,
        detector_violations: Iterable[ContentViolation] = (),
    ) -> DetectorRun:
        """
        Args:
            submission: The submission under review
            detector_violations: Violations from the external detectors, used
                only for the AI-uncertainty trigger
        """
        triggers = self.config.review_triggers
        ctx = submission.user_context
        violations: List[ContentViolation] = []

        if (
            triggers.new_user_content
            and ctx.account_age_hours < triggers.new_account_hours
            and ctx.verification_level == VerificationLevel.NONE
        ):
            violations.append(ContentViolation(
                type=ViolationType.SPAM,
                severity=Severity.LOW,
                confidence=0.6,
                description="Content from new, unverified user requires review",
                detector=self.name,
            ))

        if ctx.trust_score < self.config.low_trust_score:
            violations.append(ContentViolation(
                type=ViolationType.SPAM,
                severity=Severity.MEDIUM,
                confidence=0.8,
                description="Content from user with low trust score",
                detector=self.name,
            ))

        if ctx.report_history_count >= triggers.report_threshold:
            violations.append(ContentViolation(
                type=ViolationType.SPAM,
                severity=Severity.MEDIUM,
                confidence=0.7,
                description=(
                    f"User has {ctx.report_history_count} previous reports"
                ),
                detector=self.name,
            ))

        # Synthetic fail-safe violations (confidence 0) are already medium
        uncertain = [
            v for v in detector_violations
            if not v.uncertain
            and v.severity != Severity.CRITICAL
            and 0.0 < v.confidence < triggers.ai_uncertainty
        ]
        if uncertain:
            violations.append(ContentViolation(
                type=ViolationType.ILLEGAL,
                severity=Severity.MEDIUM,
                confidence=triggers.ai_uncertainty,
                description=(
                    "Low-confidence detector findings need human review: "
                    + ", ".join(sorted({v.type.value for v in uncertain}))
                ),
                detector=self.name,
                uncertain=True,
            ))

        return DetectorRun(
            detector=self.name,
            violations=violations,
            raw_outputs={
                "account_age_hours": ctx.account_age_hours,
                "verification_level": ctx.verification_level.value,
                "trust_score": ctx.trust_score,
                "report_history_count": ctx.report_history_count,
            },
        )
