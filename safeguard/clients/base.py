"""
Collaborator contracts for the critical path and the audit trail.

The moderation core depends only on these interfaces. HTTP implementations
live in safeguard.clients.http, SQL implementations in safeguard.db.repository.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from safeguard.moderation.models import ContentSubmission, ContentViolation
from safeguard.moderation.records import (
    AuditRecord,
    AuthorityReport,
    EvidenceSnapshot,
    PendingReport,
)


class AccountService(ABC):

    @abstractmethod
    async def suspend(self, user_id: str, reason: str) -> None:
        """Suspend an account. Suspending an already-suspended account succeeds."""
        pass


class EvidenceStore(ABC):

    @abstractmethod
    async def preserve(
        self,
        review_id: str,
        submission: ContentSubmission,
        violations: List[ContentViolation],
    ) -> EvidenceSnapshot:
        """Write an immutable snapshot. A repeat call returns the existing one."""
        pass


class AuthorityReportingGateway(ABC):

    @abstractmethod
    async def report(self, report: AuthorityReport) -> None:
        """
        Deliver a mandatory report.

        Raises:
            RetriableReportError: transient failure, safe to retry
        """
        pass


class SafetyAlertChannel(ABC):

    @abstractmethod
    async def alert(self, priority: str, payload: Dict[str, Any]) -> None:
        pass


class AuditStore(ABC):

    @abstractmethod
    async def append(self, record: AuditRecord) -> None:
        pass


class ReportOutbox(ABC):
    """Durable queue of authority reports awaiting guaranteed delivery."""

    @abstractmethod
    async def enqueue(self, report: AuthorityReport, error: str, attempts: int) -> PendingReport:
        pass

    @abstractmethod
    async def pending(self, limit: int = 100) -> List[PendingReport]:
        pass

    @abstractmethod
    async def mark_delivered(self, pending_id: int) -> None:
        pass

    @abstractmethod
    async def mark_failed(self, pending_id: int, error: str) -> None:
        pass
