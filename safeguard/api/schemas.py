"""
API Schemas (DTOs) for the moderation service.

The moderation endpoint speaks ContentSubmission / ModerationResult directly;
these models cover the operator read endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from safeguard.moderation.records import AuditKind


class HealthResponse(BaseModel):
    status: str
    version: str


class AuditRecordResponse(BaseModel):
    kind: AuditKind
    created_at: datetime
    payload: Dict[str, Any] = Field(default_factory=dict)


class AuditTrailResponse(BaseModel):
    """All audit records for one review, oldest first."""
    review_id: str
    records: List[AuditRecordResponse]


class PendingReportResponse(BaseModel):
    """An authority report still waiting in the outbox."""
    id: int
    review_id: str
    type: str
    user_id: str
    content_id: str
    attempts: int
    last_error: Optional[str] = None
    created_at: datetime


class PendingReportsResponse(BaseModel):
    count: int
    reports: List[PendingReportResponse]
