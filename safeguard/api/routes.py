"""
FastAPI routes for the moderation service.
"""
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool

from safeguard.api.schemas import (
    AuditRecordResponse,
    AuditTrailResponse,
    HealthResponse,
    PendingReportResponse,
    PendingReportsResponse,
)
from safeguard.core.config import settings
from safeguard.core.logging import get_logger
from safeguard.moderation.models import ModerationResult

logger = get_logger("api.routes")

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=settings.version)


@router.post("/moderate", response_model=ModerationResult)
async def moderate(request: Request, payload: Dict[str, Any] = Body(...)):
    """
    Moderate one content submission.

    Malformed submissions are rejected with 422 (see the ValidationError
    handler in main.py). Everything else yields a ModerationResult.
    """
    service = request.app.state.service
    return await service.moderate(payload)


@router.get("/audit/{review_id}", response_model=AuditTrailResponse)
async def get_audit_trail(request: Request, review_id: str):
    """Audit records written for one review."""
    records = await run_in_threadpool(request.app.state.audit_store.for_review, review_id)
    if not records:
        raise HTTPException(status_code=404, detail=f"No audit records for review {review_id}")
    return AuditTrailResponse(
        review_id=review_id,
        records=[
            AuditRecordResponse(kind=r.kind, created_at=r.created_at, payload=r.payload)
            for r in records
        ],
    )


@router.get("/reports/pending", response_model=PendingReportsResponse)
async def list_pending_reports(request: Request, limit: int = Query(100, ge=1, le=1000)):
    """Authority reports awaiting redelivery. Anything listed here is an open compliance risk."""
    pending = await request.app.state.outbox.pending(limit=limit)
    if pending:
        logger.warning(f"{len(pending)} authority reports awaiting delivery")
    return PendingReportsResponse(
        count=len(pending),
        reports=[
            PendingReportResponse(
                id=p.id,
                review_id=p.review_id,
                type=p.report.type,
                user_id=p.report.user_id,
                content_id=p.report.content_id,
                attempts=p.attempts,
                last_error=p.last_error,
                created_at=p.created_at,
            )
            for p in pending
        ],
    )
