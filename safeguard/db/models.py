"""
SQLAlchemy database models for Safeguard.

All three tables are append-only from the pipeline's point of view:
- AuditRecordRow: every decision, failure, critical step and compliance risk
- EvidenceSnapshotRow: immutable evidence keyed by review_id
- PendingReportRow: authority reports awaiting guaranteed delivery
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

from safeguard.moderation.models import utcnow

Base = declarative_base()


class AuditRecordRow(Base):
    __tablename__ = "audit_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    review_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(32), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("ix_audit_records_review_kind", "review_id", "kind"),
    )


class EvidenceSnapshotRow(Base):
    """
    Preserved evidence for a critical incident.

    review_id is unique: a snapshot is written once and never updated.
    """
    __tablename__ = "evidence_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    review_id = Column(String(64), nullable=False, unique=True)
    user_id = Column(String(128), nullable=False, index=True)
    content_id = Column(String(128), nullable=False)
    submission = Column(JSON, nullable=False)
    violations = Column(JSON, nullable=False)
    preserved_at = Column(DateTime(timezone=True), default=utcnow)


class PendingReportRow(Base):
    __tablename__ = "pending_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    review_id = Column(String(64), nullable=False, index=True)
    report = Column(JSON, nullable=False)
    attempts = Column(Integer, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True, index=True)
