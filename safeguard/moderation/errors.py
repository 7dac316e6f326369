"""
Failure taxonomy for the moderation pipeline.

Only ValidationError is surfaced to callers. DetectorFailure and
SystemFailure are absorbed into conservative results; CriticalPathFailure
is escalated through the audit log as a compliance risk.
"""
from typing import Any, Dict, List, Optional


class ModerationError(Exception):
    """Base class for moderation pipeline errors."""
    pass


class ValidationError(ModerationError):
    """Raised at intake for a malformed submission, before any detector runs."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class DetectorFailure(ModerationError):
    """A detector call timed out or raised."""

    def __init__(self, detector: str, reason: str, timed_out: bool = False):
        super().__init__(f"Detector '{detector}' failed: {reason}")
        self.detector = detector
        self.reason = reason
        self.timed_out = timed_out


class SystemFailure(ModerationError):
    """Unexpected error in orchestration, aggregation or decision."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{stage}: {type(cause).__name__}: {cause}")
        self.stage = stage
        self.cause = cause


class CriticalPathFailure(ModerationError):
    """A critical-incident step (suspend, preserve, report, alert) failed."""

    def __init__(self, step: str, reason: str):
        super().__init__(f"Critical step '{step}' failed: {reason}")
        self.step = step
        self.reason = reason


class RetriableReportError(CriticalPathFailure):
    """Transient failure from the authority reporting gateway."""

    def __init__(self, reason: str):
        super().__init__("report", reason)
