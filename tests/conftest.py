"""
Shared test doubles and fixtures.
"""
import asyncio
from typing import Any, Dict, List, Optional

import pytest

from safeguard.clients.base import (
    AccountService,
    AuditStore,
    AuthorityReportingGateway,
    EvidenceStore,
    ReportOutbox,
    SafetyAlertChannel,
)
from safeguard.core.config import ModerationConfig
from safeguard.db.connection import build_engine, get_session_factory, init_db
from safeguard.detectors.base import (
    AdultContentClassifier,
    AdultContentScores,
    AgeEstimate,
    AgeEstimator,
    CsamDetection,
    CsamDetector,
    TextClassifier,
)
from safeguard.moderation.errors import CriticalPathFailure, RetriableReportError
from safeguard.moderation.records import AuditKind, AuthorityReport, EvidenceSnapshot, PendingReport
from safeguard.moderation.models import utcnow
from safeguard.moderation.service import ModerationService


# ============== DETECTORS ==============

class FakeCsamDetector(CsamDetector):

    def __init__(self, confidence=0.0, estimated_age=None, age_confidence=None, delay=0.0, error=None):
        self.confidence = confidence
        self.estimated_age = estimated_age
        self.age_confidence = age_confidence
        self.delay = delay
        self.error = error
        self.calls = 0

    async def detect(self, image):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return CsamDetection(
            csam_confidence=self.confidence,
            estimated_age=self.estimated_age,
            age_confidence=self.age_confidence,
        )


class FakeAgeEstimator(AgeEstimator):

    def __init__(self, age=30.0, confidence=0.9, error=None):
        self.age = age
        self.confidence = confidence
        self.error = error
        self.calls = 0

    async def estimate(self, image):
        self.calls += 1
        if self.error:
            raise self.error
        return AgeEstimate(estimated_age=self.age, confidence=self.confidence)


class FakeAdultClassifier(AdultContentClassifier):

    def __init__(self, explicit=0.0, delay=0.0, error=None):
        self.explicit = explicit
        self.delay = delay
        self.error = error
        self.calls = 0

    async def classify(self, image):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return AdultContentScores(explicit_nudity=self.explicit)


class FakeTextClassifier(TextClassifier):

    def __init__(self, category, score=0.0, delay=0.0, error=None):
        self.category = category
        self.value = score
        self.delay = delay
        self.error = error
        self.calls = 0

    async def score(self, text):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.value


# ============== COLLABORATORS ==============

class FakeAccountService(AccountService):

    def __init__(self, fail=False):
        self.fail = fail
        self.suspended: List[tuple] = []

    async def suspend(self, user_id, reason):
        if self.fail:
            raise ConnectionError("account service down")
        self.suspended.append((user_id, reason))


class FakeEvidenceStore(EvidenceStore):

    def __init__(self, fail=False):
        self.fail = fail
        self.snapshots: Dict[str, EvidenceSnapshot] = {}

    async def preserve(self, review_id, submission, violations):
        if self.fail:
            raise IOError("evidence store unavailable")
        if review_id not in self.snapshots:
            self.snapshots[review_id] = EvidenceSnapshot(
                review_id=review_id, submission=submission, violations=violations
            )
        return self.snapshots[review_id]


class FakeGateway(AuthorityReportingGateway):
    """Fails the first ``failures`` calls, then accepts."""

    def __init__(self, failures=0, retriable=True):
        self.failures = failures
        self.retriable = retriable
        self.calls = 0
        self.delivered: List[AuthorityReport] = []

    async def report(self, report):
        self.calls += 1
        if self.calls <= self.failures:
            if self.retriable:
                raise RetriableReportError("HTTP 503: gateway unavailable")
            raise CriticalPathFailure("report", "HTTP 400: rejected")
        self.delivered.append(report)


class FakeAlertChannel(SafetyAlertChannel):

    def __init__(self, fail=False):
        self.fail = fail
        self.alerts: List[tuple] = []

    async def alert(self, priority, payload):
        if self.fail:
            raise ConnectionError("pager down")
        self.alerts.append((priority, payload))


class InMemoryAuditStore(AuditStore):

    def __init__(self, fail=False):
        self.fail = fail
        self.records = []

    async def append(self, record):
        if self.fail:
            raise IOError("audit store unavailable")
        self.records.append(record)

    def of_kind(self, kind: AuditKind, review_id: Optional[str] = None):
        return [
            r for r in self.records
            if r.kind == kind and (review_id is None or r.review_id == review_id)
        ]


class InMemoryOutbox(ReportOutbox):

    def __init__(self, fail=False):
        self.fail = fail
        self.entries: Dict[int, PendingReport] = {}

    async def enqueue(self, report, error, attempts):
        if self.fail:
            raise IOError("outbox unavailable")
        pending = PendingReport(
            id=len(self.entries) + 1,
            review_id=report.review_id,
            report=report,
            attempts=attempts,
            last_error=error,
            created_at=utcnow(),
        )
        self.entries[pending.id] = pending
        return pending

    async def pending(self, limit=100):
        return [p for p in self.entries.values() if p.delivered_at is None][:limit]

    async def mark_delivered(self, pending_id):
        self.entries[pending_id] = self.entries[pending_id].model_copy(update={"delivered_at": utcnow()})

    async def mark_failed(self, pending_id, error):
        entry = self.entries[pending_id]
        self.entries[pending_id] = entry.model_copy(
            update={"attempts": entry.attempts + 1, "last_error": error}
        )


# ============== HELPERS ==============

def make_submission(
    text: Optional[str] = None,
    image_url: Optional[str] = None,
    content_type: str = "message",
    **user_context: Any,
) -> Dict[str, Any]:
    """Raw submission payload, established-user context unless overridden."""
    ctx = {
        "account_age_hours": 24 * 90,
        "verification_level": "id",
        "report_history_count": 0,
        "trust_score": 80,
    }
    ctx.update(user_context)
    return {
        "content_id": "content-1",
        "user_id": "user-1",
        "type": content_type,
        "content": {"text": text, "image_url": image_url},
        "user_context": ctx,
    }


class Harness:
    """A ModerationService wired to test doubles, with the doubles exposed."""

    def __init__(self, config: ModerationConfig, **overrides):
        self.config = config
        self.csam = overrides.pop("csam", FakeCsamDetector())
        self.adult = overrides.pop("adult", FakeAdultClassifier())
        self.text = overrides.pop("text", [
            FakeTextClassifier("hate_speech"),
            FakeTextClassifier("harassment"),
            FakeTextClassifier("spam"),
        ])
        self.age = overrides.pop("age", None)
        self.accounts = overrides.pop("accounts", FakeAccountService())
        self.evidence = overrides.pop("evidence", FakeEvidenceStore())
        self.gateway = overrides.pop("gateway", FakeGateway())
        self.alerts = overrides.pop("alerts", FakeAlertChannel())
        self.audit_store = overrides.pop("audit_store", InMemoryAuditStore())
        self.outbox = overrides.pop("outbox", InMemoryOutbox())
        self.service = ModerationService(
            config,
            audit_store=self.audit_store,
            account_service=self.accounts,
            evidence_store=self.evidence,
            reporting_gateway=self.gateway,
            alert_channel=self.alerts,
            outbox=self.outbox,
            csam_detector=self.csam,
            adult_classifier=self.adult,
            text_classifiers=self.text,
            age_estimator=self.age,
        )

    def text_classifier(self, category: str) -> FakeTextClassifier:
        return next(c for c in self.text if c.category == category)

    def moderate(self, payload):
        return asyncio.run(self.service.moderate(payload))


# ============== FIXTURES ==============

@pytest.fixture
def config():
    """Default thresholds, no backoff sleeps, short detector timeouts."""
    return ModerationConfig(report_backoff_seconds=0.0, detector_timeout_seconds=0.5)


@pytest.fixture
def harness(config):
    def build(**overrides):
        return Harness(config, **overrides)
    return build


@pytest.fixture
def session_factory():
    """Session factory on a fresh in-memory SQLite database."""
    engine = build_engine("sqlite://")
    init_db(engine)
    yield get_session_factory(engine)
    engine.dispose()
