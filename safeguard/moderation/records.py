"""
Records written by the pipeline: audit entries, evidence snapshots and
authority reports. All keyed by review_id.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from safeguard.moderation.models import ContentSubmission, ContentViolation, utcnow


class AuditKind(str, Enum):
    DECISION = "decision"
    SYSTEM_ERROR = "system_error"
    DETECTOR_FAILURE = "detector_failure"
    CRITICAL_STEP = "critical_step"
    COMPLIANCE_RISK = "compliance_risk"


class AuditRecord(BaseModel):
    """One append-only audit entry."""
    review_id: str
    kind: AuditKind
    created_at: datetime = Field(default_factory=utcnow)
    payload: Dict[str, Any] = Field(default_factory=dict)


class EvidenceSnapshot(BaseModel):
    """Immutable copy of the submission and its violations at decision time."""
    review_id: str
    submission: ContentSubmission
    violations: List[ContentViolation]
    preserved_at: datetime = Field(default_factory=utcnow)


class AuthorityReport(BaseModel):
    """Payload sent to the external authority reporting gateway."""
    type: str
    user_id: str
    content_id: str
    review_id: str
    violations: List[ContentViolation]
    preserved_evidence: bool
    timestamp: datetime = Field(default_factory=utcnow)
    contacts: Dict[str, str] = Field(default_factory=dict)


class PendingReport(BaseModel):
    """An authority report waiting in the outbox for redelivery."""
    id: int
    review_id: str
    report: AuthorityReport
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime
    delivered_at: Optional[datetime] = None
