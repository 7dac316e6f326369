"""
Audit logger.

Every decision and every failure is appended to the audit store keyed by
review_id. Public methods never raise: if the store is unavailable the full
record goes to the log stream instead, so nothing is silently lost.
"""
import json
import logging
from typing import Any, Dict, Optional

from safeguard.clients.base import AuditStore
from safeguard.core.logging import get_logger
from safeguard.moderation.models import ContentSubmission, ModerationResult
from safeguard.moderation.records import AuditKind, AuditRecord

logger = get_logger("moderation.audit")


class AuditLogger:

    def __init__(self, store: AuditStore):
        self.store = store

    async def append(self, record: AuditRecord) -> bool:
        """Append a record. Returns False (after logging the record) if the store failed."""
        level = logging.CRITICAL if record.kind == AuditKind.COMPLIANCE_RISK else logging.INFO
        try:
            await self.store.append(record)
        except Exception as e:
            logger.error(
                f"Audit store append failed ({type(e).__name__}: {e}); record follows: "
                f"{json.dumps(record.model_dump(mode='json'), sort_keys=True)}"
            )
            if level == logging.CRITICAL:
                logger.critical(
                    f"COMPLIANCE RISK for review {record.review_id} could not be persisted"
                )
            return False

        logger.log(level, f"Audit {record.kind.value} recorded for review {record.review_id}")
        return True

    async def record_decision(
        self,
        submission: ContentSubmission,
        result: ModerationResult,
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        payload = {
            "content_id": submission.content_id,
            "user_id": submission.user_id,
            "content_type": submission.type.value,
            "action": result.action.value,
            "confidence": result.confidence,
            "requires_manual_review": result.requires_manual_review,
            "violation_count": len(result.violations),
            "violations": [
                {
                    "type": v.type.value,
                    "severity": v.severity.value,
                    "confidence": v.confidence,
                    "detector": v.detector,
                    "uncertain": v.uncertain,
                }
                for v in result.violations
            ],
            "flagged_content": result.flagged_content or [],
            "detectors_used": sorted(result.metadata.detectors_used),
            "processing_time_ms": result.metadata.processing_time_ms,
        }
        if extra:
            payload.update(extra)
        return await self.append(AuditRecord(
            review_id=result.metadata.review_id,
            kind=AuditKind.DECISION,
            payload=payload,
        ))

    async def record_system_error(self, review_id: str, stage: str, error: BaseException) -> bool:
        return await self.append(AuditRecord(
            review_id=review_id,
            kind=AuditKind.SYSTEM_ERROR,
            payload={
                "stage": stage,
                "error_type": type(error).__name__,
                "error": str(error),
            },
        ))

    async def record_detector_failure(
        self,
        review_id: str,
        detector: str,
        reason: str,
        timed_out: bool,
    ) -> bool:
        return await self.append(AuditRecord(
            review_id=review_id,
            kind=AuditKind.DETECTOR_FAILURE,
            payload={"detector": detector, "reason": reason, "timed_out": timed_out},
        ))

    async def record_step(
        self,
        review_id: str,
        step: str,
        success: bool,
        detail: Optional[Dict[str, Any]] = None,
    ) -> bool:
        payload = {"step": step, "success": success}
        if detail:
            payload.update(detail)
        return await self.append(AuditRecord(
            review_id=review_id,
            kind=AuditKind.CRITICAL_STEP,
            payload=payload,
        ))

    async def record_compliance_risk(
        self,
        review_id: str,
        step: str,
        reason: str,
        detail: Optional[Dict[str, Any]] = None,
    ) -> bool:
        payload = {"step": step, "reason": reason}
        if detail:
            payload.update(detail)
        return await self.append(AuditRecord(
            review_id=review_id,
            kind=AuditKind.COMPLIANCE_RISK,
            payload=payload,
        ))
