"""
Test the critical incident path and authority report redelivery.
"""
import asyncio

import pytest

from safeguard.moderation.audit import AuditLogger
from safeguard.moderation.incident import CriticalIncidentHandler, redeliver_pending_reports
from safeguard.moderation.intake import SubmissionIntake
from safeguard.moderation.models import ContentViolation, Severity, ViolationType
from safeguard.moderation.records import AuditKind

from tests.conftest import (
    FakeAccountService,
    FakeAlertChannel,
    FakeEvidenceStore,
    FakeGateway,
    InMemoryAuditStore,
    InMemoryOutbox,
    make_submission,
)

CSAM = ContentViolation(
    type=ViolationType.CSAM,
    severity=Severity.CRITICAL,
    confidence=0.4,
    description="Potential child sexual abuse material detected",
    requires_law_enforcement=True,
    detector="csam_detector",
)


class Setup:

    def __init__(self, config, **overrides):
        self.accounts = overrides.get("accounts", FakeAccountService())
        self.evidence = overrides.get("evidence", FakeEvidenceStore())
        self.gateway = overrides.get("gateway", FakeGateway())
        self.alerts = overrides.get("alerts", FakeAlertChannel())
        self.store = InMemoryAuditStore()
        self.outbox = overrides.get("outbox", InMemoryOutbox())
        self.handler = CriticalIncidentHandler(
            config,
            account_service=self.accounts,
            evidence_store=self.evidence,
            reporting_gateway=self.gateway,
            alert_channel=self.alerts,
            audit=AuditLogger(self.store),
            outbox=self.outbox,
        )
        self.ticket = SubmissionIntake(config).accept(
            make_submission(image_url="https://cdn.example.com/x.jpg", content_type="profile_photo")
        )

    def handle(self, violations=(CSAM,)):
        return asyncio.run(self.handler.handle(self.ticket, list(violations)))

    def steps(self):
        return {
            r.payload["step"]: r.payload["success"]
            for r in self.store.of_kind(AuditKind.CRITICAL_STEP)
        }

    def risks(self):
        return [r.payload["step"] for r in self.store.of_kind(AuditKind.COMPLIANCE_RISK)]


def test_all_steps_succeed(config):
    s = Setup(config)
    incident = s.handle()

    assert s.accounts.suspended == [("user-1", "csam_detected")]
    assert s.ticket.review_id in s.evidence.snapshots
    assert len(s.gateway.delivered) == 1
    assert s.gateway.delivered[0].preserved_evidence is True
    assert s.gateway.delivered[0].contacts["emergency"] == "999"
    assert s.alerts.alerts[0][0] == "critical"
    assert s.steps() == {"suspend": True, "preserve": True, "report": True, "alert": True}
    assert s.risks() == []
    assert incident.compliance_risks == []


def test_underage_reason(config):
    s = Setup(config)
    underage = CSAM.model_copy(update={"type": ViolationType.UNDERAGE})
    incident = s.handle([underage])
    assert incident.incident_type == "underage"
    assert s.accounts.suspended == [("user-1", "underage_detected")]


def test_gateway_fails_three_times(config):
    """Test that persistent gateway failure queues the report and records a compliance risk."""
    s = Setup(config, gateway=FakeGateway(failures=3))
    incident = s.handle()

    assert s.gateway.calls == 3
    steps = s.steps()
    assert steps["suspend"] is True
    assert steps["preserve"] is True
    assert steps["report"] is False
    assert steps["alert"] is True
    assert s.risks() == ["report"]
    assert incident.report_queued is True

    pending = list(s.outbox.entries.values())
    assert len(pending) == 1
    assert pending[0].attempts == 3
    assert pending[0].review_id == s.ticket.review_id
    # The alert tells the safety team the report did not go through
    assert s.alerts.alerts[0][1]["authority_report_delivered"] is False


def test_gateway_recovers_within_retries(config):
    s = Setup(config, gateway=FakeGateway(failures=2))
    incident = s.handle()
    assert s.gateway.calls == 3
    assert incident.succeeded("report")
    assert s.outbox.entries == {}


def test_non_retriable_rejection_goes_straight_to_outbox(config):
    s = Setup(config, gateway=FakeGateway(failures=5, retriable=False))
    incident = s.handle()
    assert s.gateway.calls == 1
    assert incident.report_queued


def test_outbox_failure_is_its_own_compliance_risk(config):
    s = Setup(config, gateway=FakeGateway(failures=3), outbox=InMemoryOutbox(fail=True))
    incident = s.handle()
    assert incident.report_queued is False
    assert s.risks() == ["report_outbox", "report"]


def test_suspend_failure_does_not_stop_later_steps(config):
    s = Setup(config, accounts=FakeAccountService(fail=True), evidence=FakeEvidenceStore(fail=True))
    incident = s.handle()
    assert incident.compliance_risks == ["suspend", "preserve"]
    assert len(s.gateway.delivered) == 1
    assert s.gateway.delivered[0].preserved_evidence is False
    assert len(s.alerts.alerts) == 1


def test_alert_failure_is_a_compliance_risk(config):
    s = Setup(config, alerts=FakeAlertChannel(fail=True))
    incident = s.handle()
    assert incident.compliance_risks == ["alert"]
    alert_steps = [r for r in s.store.of_kind(AuditKind.CRITICAL_STEP) if r.payload["step"] == "alert"]
    assert alert_steps[0].payload["attempts"] == config.alert_max_attempts


def test_redelivery_drains_outbox(config):
    s = Setup(config, gateway=FakeGateway(failures=3))
    s.handle()
    assert len(s.outbox.entries) == 1

    # Gateway is back
    counts = asyncio.run(redeliver_pending_reports(s.gateway, s.outbox, AuditLogger(s.store)))
    assert counts == {"delivered": 1, "failed": 0}
    assert asyncio.run(s.outbox.pending()) == []
    assert len(s.gateway.delivered) == 1


def test_redelivery_failure_keeps_report_pending(config):
    s = Setup(config, gateway=FakeGateway(failures=10))
    s.handle()
    counts = asyncio.run(redeliver_pending_reports(s.gateway, s.outbox, AuditLogger(s.store)))
    assert counts == {"delivered": 0, "failed": 1}
    pending = asyncio.run(s.outbox.pending())
    assert pending[0].attempts == 4
    assert s.risks().count("report") == 2


def test_cancelled_report_is_queued_before_task_ends(config):
    """Test that cancelling the handler mid-delivery still leaves the report in the outbox."""

    class HangingGateway(FakeGateway):
        async def report(self, report):
            self.calls += 1
            await asyncio.sleep(10)

    s = Setup(config, gateway=HangingGateway())

    async def scenario():
        task = asyncio.ensure_future(s.handler.handle(s.ticket, [CSAM]))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    pending = list(s.outbox.entries.values())
    assert len(pending) == 1
    assert pending[0].review_id == s.ticket.review_id
    assert "cancelled" in pending[0].last_error
    assert s.steps()["report"] is False
    assert s.risks() == ["report"]
    risk = s.store.of_kind(AuditKind.COMPLIANCE_RISK)[0]
    assert risk.payload["queued_for_redelivery"] is True
