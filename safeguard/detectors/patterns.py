"""
Local text pattern scan.

Flags personal-information sharing (no violation, tags only) and scores
scam phrasing by how many independent phrase groups appear.
"""
import re
from typing import Dict, List, Pattern

from safeguard.core.config import ModerationConfig
from safeguard.detectors.base import PATTERN_SCANNER, DetectorRun
from safeguard.moderation.models import (
    ContentViolation,
    Severity,
    ViolationEvidence,
    ViolationType,
)

# Personal information, flag tag -> pattern
_PERSONAL_INFO_PATTERNS: Dict[str, Pattern[str]] = {
    "phone_number": re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    "email_address": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "social_handle": re.compile(
        r"\b(snapchat|instagram|insta|snap|whatsapp|telegram|kik)\b", re.IGNORECASE
    ),
    "payment_app": re.compile(r"\b(venmo|cashapp|paypal|zelle)\b", re.IGNORECASE),
}

# Scam phrase groups; the score is the fraction of groups that match
_SCAM_PATTERN_GROUPS: List[Pattern[str]] = [
    re.compile(r"\b(verify|verification|account|suspended|click|link|urgent)\b", re.IGNORECASE),
    re.compile(r"\b(money|cash|payment|send|transfer|bitcoin|crypto)\b", re.IGNORECASE),
    re.compile(r"\b(emergency|hospital|stuck|help|western union)\b", re.IGNORECASE),
    re.compile(r"\b(gift card|steam|itunes|amazon card)\b", re.IGNORECASE),
]


class PatternScanner:
    """Regex scan over submission text."""

    name = PATTERN_SCANNER

    def __init__(self, config: ModerationConfig):
        self.config = config

    def scan(self, text: str) -> DetectorRun:
        flagged = [
            tag for tag, pattern in _PERSONAL_INFO_PATTERNS.items()
            if pattern.search(text)
        ]

        matched_groups = [
            idx for idx, pattern in enumerate(_SCAM_PATTERN_GROUPS)
            if pattern.search(text)
        ]
        scam_score = len(matched_groups) / len(_SCAM_PATTERN_GROUPS)

        violations: List[ContentViolation] = []
        if len(matched_groups) >= self.config.scam_min_pattern_groups:
            violations.append(ContentViolation(
                type=ViolationType.SCAM,
                severity=Severity.MEDIUM,
                confidence=scam_score,
                description="Message matches known scam phrasing",
                detector=self.name,
                evidence=ViolationEvidence(
                    location="text",
                    context=f"{len(matched_groups)} scam phrase groups matched",
                ),
            ))
            flagged.append("scam")

        return DetectorRun(
            detector=self.name,
            violations=violations,
            flagged=flagged,
            raw_outputs={"scam_score": scam_score, "scam_groups": matched_groups},
        )
