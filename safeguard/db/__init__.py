"""
Database module for Safeguard.
"""
from safeguard.db.connection import build_engine, get_session_factory, init_db
from safeguard.db.models import AuditRecordRow, Base, EvidenceSnapshotRow, PendingReportRow

__all__ = [
    "build_engine",
    "get_session_factory",
    "init_db",
    "AuditRecordRow",
    "Base",
    "EvidenceSnapshotRow",
    "PendingReportRow",
]
