"""
SQL-backed stores for the audit log, evidence snapshots and report outbox.

Repository pattern over SQLAlchemy sessions. Each call opens its own
session, so concurrent submissions never share session state. Sessions are
blocking; the async store methods run them in the default executor so the
event loop keeps serving detector calls and requests.
"""
import asyncio
from datetime import datetime, timezone
from functools import partial
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import asc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from safeguard.clients.base import AuditStore, EvidenceStore, ReportOutbox
from safeguard.core.logging import get_logger
from safeguard.db.connection import get_session_factory, session_scope
from safeguard.db.models import AuditRecordRow, EvidenceSnapshotRow, PendingReportRow
from safeguard.moderation.models import ContentSubmission, ContentViolation, utcnow
from safeguard.moderation.records import (
    AuditKind,
    AuditRecord,
    AuthorityReport,
    EvidenceSnapshot,
    PendingReport,
)

logger = get_logger("db.repository")

T = TypeVar("T")


async def run_blocking(fn: Callable[..., T], *args) -> T:
    """Run blocking session work off the event loop."""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, partial(fn, *args))


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============== AUDIT LOG ==============

class SqlAuditStore(AuditStore):
    """Append-only audit log."""

    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or get_session_factory()

    async def append(self, record: AuditRecord) -> None:
        await run_blocking(self._append, record)

    def _append(self, record: AuditRecord) -> None:
        with session_scope(self.session_factory) as db:
            db.add(AuditRecordRow(
                review_id=record.review_id,
                kind=record.kind.value,
                payload=record.model_dump(mode="json")["payload"],
                created_at=record.created_at,
            ))

    def for_review(self, review_id: str) -> List[AuditRecord]:
        """All records for one review, oldest first."""
        with session_scope(self.session_factory) as db:
            rows = db.query(AuditRecordRow).filter(
                AuditRecordRow.review_id == review_id
            ).order_by(asc(AuditRecordRow.id)).all()
            return [
                AuditRecord(
                    review_id=row.review_id,
                    kind=AuditKind(row.kind),
                    created_at=as_utc(row.created_at),
                    payload=row.payload or {},
                )
                for row in rows
            ]


# ============== EVIDENCE STORE ==============

class SqlEvidenceStore(EvidenceStore):
    """Immutable evidence snapshots, one per review_id."""

    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or get_session_factory()

    async def preserve(
        self,
        review_id: str,
        submission: ContentSubmission,
        violations: List[ContentViolation],
    ) -> EvidenceSnapshot:
        return await run_blocking(self._preserve, review_id, submission, violations)

    def _preserve(
        self,
        review_id: str,
        submission: ContentSubmission,
        violations: List[ContentViolation],
    ) -> EvidenceSnapshot:
        existing = self.get(review_id)
        if existing:
            logger.info(f"Evidence already preserved for review {review_id}")
            return existing

        snapshot = EvidenceSnapshot(
            review_id=review_id,
            submission=submission,
            violations=violations,
        )
        data = snapshot.model_dump(mode="json")
        try:
            with session_scope(self.session_factory) as db:
                db.add(EvidenceSnapshotRow(
                    review_id=review_id,
                    user_id=submission.user_id,
                    content_id=submission.content_id,
                    submission=data["submission"],
                    violations=data["violations"],
                    preserved_at=snapshot.preserved_at,
                ))
        except IntegrityError:
            # Lost a race with a concurrent writer; theirs stands
            existing = self.get(review_id)
            if existing is None:
                raise
            return existing

        logger.info(f"Evidence preserved for review: {review_id}")
        return snapshot

    def get(self, review_id: str):
        with session_scope(self.session_factory) as db:
            row = db.query(EvidenceSnapshotRow).filter(
                EvidenceSnapshotRow.review_id == review_id
            ).first()
            if row is None:
                return None
            return EvidenceSnapshot(
                review_id=row.review_id,
                submission=ContentSubmission.model_validate(row.submission),
                violations=[ContentViolation.model_validate(v) for v in row.violations],
                preserved_at=as_utc(row.preserved_at),
            )


# ============== REPORT OUTBOX ==============

class SqlReportOutbox(ReportOutbox):
    """Durable queue of undelivered authority reports."""

    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or get_session_factory()

    @staticmethod
    def _to_model(row: PendingReportRow) -> PendingReport:
        return PendingReport(
            id=row.id,
            review_id=row.review_id,
            report=AuthorityReport.model_validate(row.report),
            attempts=row.attempts or 0,
            last_error=row.last_error,
            created_at=as_utc(row.created_at),
            delivered_at=as_utc(row.delivered_at),
        )

    async def enqueue(self, report: AuthorityReport, error: str, attempts: int) -> PendingReport:
        pending = await run_blocking(self._enqueue, report, error, attempts)
        logger.warning(f"Authority report for review {report.review_id} queued for redelivery")
        return pending

    def _enqueue(self, report: AuthorityReport, error: str, attempts: int) -> PendingReport:
        with session_scope(self.session_factory) as db:
            row = PendingReportRow(
                review_id=report.review_id,
                report=report.model_dump(mode="json"),
                attempts=attempts,
                last_error=error,
                created_at=utcnow(),
            )
            db.add(row)
            db.flush()
            return self._to_model(row)

    async def pending(self, limit: int = 100) -> List[PendingReport]:
        return await run_blocking(self._pending, limit)

    def _pending(self, limit: int) -> List[PendingReport]:
        with session_scope(self.session_factory) as db:
            rows = db.query(PendingReportRow).filter(
                PendingReportRow.delivered_at.is_(None)
            ).order_by(asc(PendingReportRow.created_at)).limit(limit).all()
            return [self._to_model(row) for row in rows]

    async def mark_delivered(self, pending_id: int) -> None:
        await run_blocking(self._mark_delivered, pending_id)

    def _mark_delivered(self, pending_id: int) -> None:
        with session_scope(self.session_factory) as db:
            row = db.get(PendingReportRow, pending_id)
            if row is None:
                logger.warning(f"Pending report {pending_id} not found")
                return
            row.delivered_at = utcnow()
            row.attempts = (row.attempts or 0) + 1

    async def mark_failed(self, pending_id: int, error: str) -> None:
        await run_blocking(self._mark_failed, pending_id, error)

    def _mark_failed(self, pending_id: int, error: str) -> None:
        with session_scope(self.session_factory) as db:
            row = db.get(PendingReportRow, pending_id)
            if row is None:
                logger.warning(f"Pending report {pending_id} not found")
                return
            row.attempts = (row.attempts or 0) + 1
            row.last_error = error
