"""
Moderation pipeline: data model, failure taxonomy and pipeline stages.

The service facade lives in safeguard.moderation.service and is not
re-exported here; it depends on the collaborator contracts, which depend on
this package's models.
"""
from safeguard.moderation.errors import (
    CriticalPathFailure,
    DetectorFailure,
    ModerationError,
    RetriableReportError,
    SystemFailure,
    ValidationError,
)
from safeguard.moderation.models import (
    ContentSubmission,
    ContentType,
    ContentViolation,
    ModerationAction,
    ModerationResult,
    Severity,
    ViolationType,
)

__all__ = [
    "CriticalPathFailure",
    "DetectorFailure",
    "ModerationError",
    "RetriableReportError",
    "SystemFailure",
    "ValidationError",
    "ContentSubmission",
    "ContentType",
    "ContentViolation",
    "ModerationAction",
    "ModerationResult",
    "Severity",
    "ViolationType",
]
