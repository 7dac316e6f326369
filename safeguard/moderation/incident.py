"""
Critical incident handler for csam/underage findings.

Steps, in order, each audited individually:
1. Suspend the account
2. Preserve an immutable evidence snapshot
3. Report to the external authority (legal obligation: retried with
   backoff, then queued in the durable outbox; never dropped)
4. Alert the internal safety team, whatever happened in step 3

Steps are not atomic and nothing is rolled back: a suspension stands even
if reporting later fails. Every failed step is a compliance risk.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from safeguard.clients.base import (
    AccountService,
    AuthorityReportingGateway,
    EvidenceStore,
    ReportOutbox,
    SafetyAlertChannel,
)
from safeguard.core.config import ModerationConfig
from safeguard.core.logging import get_logger
from safeguard.moderation.audit import AuditLogger
from safeguard.moderation.errors import RetriableReportError
from safeguard.moderation.intake import IntakeTicket
from safeguard.moderation.models import ContentViolation, ViolationType
from safeguard.moderation.records import AuthorityReport

logger = get_logger("moderation.incident")

STEP_SUSPEND = "suspend"
STEP_PRESERVE = "preserve"
STEP_REPORT = "report"
STEP_ALERT = "alert"
STEP_OUTBOX = "report_outbox"


@dataclass
class StepOutcome:
    step: str
    success: bool
    error: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IncidentReport:
    """What the critical path did for one review."""
    review_id: str
    incident_type: str
    steps: List[StepOutcome] = field(default_factory=list)
    report_queued: bool = False

    def succeeded(self, step: str) -> bool:
        return any(s.step == step and s.success for s in self.steps)

    @property
    def compliance_risks(self) -> List[str]:
        return [s.step for s in self.steps if not s.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "incident_type": self.incident_type,
            "steps": {s.step: s.success for s in self.steps},
            "report_queued": self.report_queued,
            "compliance_risks": self.compliance_risks,
        }


class CriticalIncidentHandler:

    def __init__(
        self,
        config: ModerationConfig,
        account_service: AccountService,
        evidence_store: EvidenceStore,
        reporting_gateway: AuthorityReportingGateway,
        alert_channel: SafetyAlertChannel,
        audit: AuditLogger,
        outbox: Optional[ReportOutbox] = None,
    ):
        self.config = config
        self.account_service = account_service
        self.evidence_store = evidence_store
        self.reporting_gateway = reporting_gateway
        self.alert_channel = alert_channel
        self.audit = audit
        self.outbox = outbox

    async def handle(
        self,
        ticket: IntakeTicket,
        violations: List[ContentViolation],
    ) -> IncidentReport:
        """
        Run the critical path. Failures become compliance risks; only
        cancellation propagates, after an undelivered report is queued.

        Args:
            ticket: The accepted submission
            violations: The full aggregated violation set (preserved and reported)
        """
        submission = ticket.submission
        review_id = ticket.review_id
        critical = [v for v in violations if v.is_critical_incident]
        incident_type = (
            ViolationType.CSAM.value
            if any(v.type == ViolationType.CSAM for v in critical)
            else ViolationType.UNDERAGE.value
        )
        reason = f"{incident_type}_detected"
        incident = IncidentReport(review_id=review_id, incident_type=incident_type)

        logger.critical(
            f"[{review_id}] Critical incident ({incident_type}) for user "
            f"{submission.user_id}, content {submission.content_id}"
        )

        # 1. Suspend
        incident.steps.append(await self._step(
            review_id, STEP_SUSPEND,
            lambda: self.account_service.suspend(submission.user_id, reason),
        ))

        # 2. Preserve evidence before anything else can clean up
        incident.steps.append(await self._step(
            review_id, STEP_PRESERVE,
            lambda: self.evidence_store.preserve(review_id, submission, violations),
        ))

        # 3. Report to authorities
        report = AuthorityReport(
            type=incident_type,
            user_id=submission.user_id,
            content_id=submission.content_id,
            review_id=review_id,
            violations=violations,
            preserved_evidence=incident.succeeded(STEP_PRESERVE),
            contacts=dict(self.config.authority_contacts),
        )
        report_outcome = await self._report(review_id, report)
        incident.steps.append(report_outcome)
        incident.report_queued = bool(report_outcome.detail.get("queued_for_redelivery"))

        # 4. Alert the safety team regardless of the report outcome
        alert_payload = {
            "type": reason,
            "user_id": submission.user_id,
            "content_id": submission.content_id,
            "review_id": review_id,
            "requires_immediate": True,
            "authority_report_delivered": report_outcome.success,
            "authority_report_queued": incident.report_queued,
            "violations": [
                {"type": v.type.value, "severity": v.severity.value, "confidence": v.confidence}
                for v in critical
            ],
        }
        incident.steps.append(await self._step(
            review_id, STEP_ALERT,
            lambda: self.alert_channel.alert("critical", alert_payload),
            attempts=self.config.alert_max_attempts,
        ))

        logger.info(f"[{review_id}] Critical path finished: {incident.to_dict()}")
        return incident

    async def _step(
        self,
        review_id: str,
        step: str,
        action: Callable[[], Awaitable[Any]],
        attempts: int = 1,
    ) -> StepOutcome:
        """Run one step with optional retries, auditing the outcome."""
        delay = self.config.report_backoff_seconds
        last_error = None
        for attempt in range(1, attempts + 1):
            try:
                await action()
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.error(f"[{review_id}] Critical step '{step}' failed (attempt {attempt}): {last_error}")
                if attempt < attempts:
                    await asyncio.sleep(delay)
                    delay *= 2
                continue

            await self.audit.record_step(review_id, step, True, {"attempts": attempt})
            return StepOutcome(step=step, success=True, detail={"attempts": attempt})

        await self.audit.record_step(review_id, step, False, {"error": last_error, "attempts": attempts})
        await self.audit.record_compliance_risk(review_id, step, last_error, {"attempts": attempts})
        return StepOutcome(step=step, success=False, error=last_error, detail={"attempts": attempts})

    async def _report(self, review_id: str, report: AuthorityReport) -> StepOutcome:
        """Deliver the authority report: retry with backoff, then queue for guaranteed delivery."""
        max_attempts = self.config.report_max_attempts
        delay = self.config.report_backoff_seconds
        last_error = None
        attempts = 0
        delivered = False

        try:
            for attempt in range(1, max_attempts + 1):
                attempts = attempt
                try:
                    await self.reporting_gateway.report(report)
                except RetriableReportError as e:
                    last_error = str(e)
                    logger.warning(
                        f"[{review_id}] Authority report attempt {attempt}/{max_attempts} failed: {last_error}"
                    )
                    if attempt < max_attempts:
                        await asyncio.sleep(delay)
                        delay *= 2
                    continue
                except Exception as e:
                    # Not retriable; go straight to the outbox
                    last_error = f"{type(e).__name__}: {e}"
                    logger.error(f"[{review_id}] Authority report rejected: {last_error}")
                    break
                delivered = True
                break
        except asyncio.CancelledError:
            # Shutdown mid-delivery: the report must reach the outbox before the task ends
            reason = "cancelled before delivery"
            if last_error:
                reason = f"{reason} (last error: {last_error})"
            logger.critical(f"[{review_id}] Authority report interrupted; queueing for redelivery")
            await self._report_failed(review_id, report, reason, attempts)
            raise

        if delivered:
            await self.audit.record_step(review_id, STEP_REPORT, True, {"attempts": attempts})
            return StepOutcome(step=STEP_REPORT, success=True, detail={"attempts": attempts})
        return await self._report_failed(review_id, report, last_error, attempts)

    async def _report_failed(
        self,
        review_id: str,
        report: AuthorityReport,
        error: str,
        attempts: int,
    ) -> StepOutcome:
        queued = await self._enqueue(review_id, report, error, attempts)
        detail = {"attempts": attempts, "queued_for_redelivery": queued}
        await self.audit.record_step(review_id, STEP_REPORT, False, {"error": error, **detail})
        await self.audit.record_compliance_risk(review_id, STEP_REPORT, error, detail)
        return StepOutcome(step=STEP_REPORT, success=False, error=error, detail=detail)

    async def _enqueue(
        self,
        review_id: str,
        report: AuthorityReport,
        error: str,
        attempts: int,
    ) -> bool:
        if self.outbox is None:
            logger.critical(f"[{review_id}] No report outbox configured; authority report NOT queued")
            await self.audit.record_compliance_risk(
                review_id, STEP_OUTBOX, "no report outbox configured"
            )
            return False
        try:
            await self.outbox.enqueue(report, error, attempts)
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            logger.critical(f"[{review_id}] Authority report could not be queued: {reason}")
            await self.audit.record_compliance_risk(review_id, STEP_OUTBOX, reason)
            return False
        return True


async def redeliver_pending_reports(
    gateway: AuthorityReportingGateway,
    outbox: ReportOutbox,
    audit: AuditLogger,
    limit: int = 100,
) -> Dict[str, int]:
    """
    Retry every undelivered authority report once.

    Undelivered reports stay in the outbox and get a fresh compliance-risk
    record so on-call sees them until they go through.
    """
    delivered = 0
    failed = 0
    for pending in await outbox.pending(limit=limit):
        try:
            await gateway.report(pending.report)
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            failed += 1
            await outbox.mark_failed(pending.id, reason)
            await audit.record_compliance_risk(
                pending.review_id, STEP_REPORT, reason,
                {"redelivery": True, "attempts": pending.attempts + 1},
            )
            continue

        delivered += 1
        await outbox.mark_delivered(pending.id)
        await audit.record_step(
            pending.review_id, STEP_REPORT, True,
            {"redelivery": True, "attempts": pending.attempts + 1},
        )

    if delivered or failed:
        logger.info(f"Report redelivery: delivered={delivered}, failed={failed}")
    return {"delivered": delivered, "failed": failed}
