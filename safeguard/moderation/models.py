"""
Data model for the moderation pipeline.

ContentSubmission goes in, ContentViolation is what detectors produce,
ModerationResult comes out. All models are validated at the boundary.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_serializer, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentType(str, Enum):
    """Kinds of user content that can be submitted for review."""
    PROFILE_PHOTO = "profile_photo"
    PRIVATE_PHOTO = "private_photo"
    MESSAGE = "message"
    BIO = "bio"
    PROFILE_INFO = "profile_info"


class VerificationLevel(str, Enum):
    NONE = "none"
    PHONE = "phone"
    ID = "id"
    FULL = "full"


class ViolationType(str, Enum):
    CSAM = "csam"
    NUDITY = "nudity"
    VIOLENCE = "violence"
    HARASSMENT = "harassment"
    HATE_SPEECH = "hate_speech"
    SPAM = "spam"
    SCAM = "scam"
    UNDERAGE = "underage"
    ILLEGAL = "illegal"


_SEVERITY_RANK = {"low": 0, "medium": 1, "high": 2, "critical": 3}


class Severity(str, Enum):
    """Violation severity, totally ordered: low < medium < high < critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self.value]

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


class ModerationAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REVIEW = "review"
    QUARANTINE = "quarantine"


# Violation types that route to the critical incident path
CRITICAL_INCIDENT_TYPES = frozenset({ViolationType.CSAM, ViolationType.UNDERAGE})


# ===== SUBMISSION =====

class ImageRef(BaseModel):
    """Pointer to the image under review: a URL or inline base64 bytes."""
    url: Optional[str] = None
    data_base64: Optional[str] = None

    def describe(self) -> str:
        if self.url:
            return self.url
        return f"inline:{len(self.data_base64 or '')}b64"


class SubmissionContent(BaseModel):
    """Payload of a submission. At least one of text or image is required at intake."""
    text: Optional[str] = None
    image_url: Optional[str] = None
    image_base64: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())

    @property
    def has_image(self) -> bool:
        return bool(self.image_url or self.image_base64)

    @property
    def image_ref(self) -> Optional[ImageRef]:
        if not self.has_image:
            return None
        return ImageRef(url=self.image_url or None, data_base64=self.image_base64 or None)


class UserContext(BaseModel):
    """Fields about the submitting user that the context risk check consumes."""
    account_age_hours: float = Field(..., ge=0.0)
    verification_level: VerificationLevel = VerificationLevel.NONE
    report_history_count: int = Field(default=0, ge=0)
    trust_score: float = Field(default=50.0, ge=0.0, le=100.0)


class SubmissionContext(BaseModel):
    """Provenance only; never read by the decision rules."""
    ip_address: str = ""
    user_agent: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    location: Optional[str] = None


class ContentSubmission(BaseModel):
    """One piece of user content under review."""
    content_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    type: ContentType
    content: SubmissionContent
    user_context: UserContext
    submission_context: SubmissionContext = Field(default_factory=SubmissionContext)


# ===== VIOLATIONS =====

class ViolationEvidence(BaseModel):
    """Pointer into the submission for audit replay."""
    location: str
    context: str


class ContentViolation(BaseModel):
    """One detected problem."""
    type: ViolationType
    severity: Severity
    confidence: float = Field(..., ge=0.0, le=1.0)
    description: str
    requires_law_enforcement: bool = False
    evidence: Optional[ViolationEvidence] = None

    # Provenance: which detector produced this violation
    detector: Optional[str] = None
    # True for synthetic violations raised because a detector failed
    uncertain: bool = False

    @property
    def is_critical_incident(self) -> bool:
        return (
            self.type in CRITICAL_INCIDENT_TYPES
            and self.severity == Severity.CRITICAL
        )


# ===== RESULT =====

class ResultMetadata(BaseModel):
    detectors_used: Set[str] = Field(default_factory=set)
    processing_time_ms: float = Field(default=0.0, ge=0.0)
    reviewed_at: datetime = Field(default_factory=utcnow)
    review_id: str

    @field_serializer("detectors_used")
    def _serialize_detectors(self, detectors_used: Set[str]) -> List[str]:
        return sorted(detectors_used)


class ModerationResult(BaseModel):
    """Pipeline output: exactly one per moderate() call."""
    action: ModerationAction
    confidence: float = Field(..., ge=0.0, le=1.0)
    violations: List[ContentViolation] = Field(default_factory=list)
    requires_manual_review: bool
    flagged_content: Optional[List[str]] = None
    metadata: ResultMetadata

    @field_validator("flagged_content")
    @classmethod
    def _empty_flags_are_none(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return v or None

    @property
    def review_id(self) -> str:
        return self.metadata.review_id
