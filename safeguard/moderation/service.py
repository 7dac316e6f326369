"""
Moderation service: the single entry point of the pipeline.

intake -> detector orchestration -> aggregation -> decision
       -> (critical incident path) -> audit -> result
"""
import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Sequence, Set, TypeVar, Union

from sqlalchemy.orm import sessionmaker

from safeguard.clients.base import (
    AccountService,
    AuditStore,
    AuthorityReportingGateway,
    EvidenceStore,
    ReportOutbox,
    SafetyAlertChannel,
)
from safeguard.core.config import ModerationConfig, Settings, get_moderation_config, settings as default_settings
from safeguard.core.logging import get_logger
from safeguard.detectors.base import AdultContentClassifier, AgeEstimator, CsamDetector, TextClassifier
from safeguard.moderation.aggregator import aggregate
from safeguard.moderation.audit import AuditLogger
from safeguard.moderation.decision import Decision, decide
from safeguard.moderation.errors import SystemFailure, ValidationError
from safeguard.moderation.incident import CriticalIncidentHandler, IncidentReport
from safeguard.moderation.intake import IntakeTicket, SubmissionIntake
from safeguard.moderation.models import (
    ContentSubmission,
    ContentViolation,
    ModerationAction,
    ModerationResult,
    ResultMetadata,
    Severity,
    ViolationType,
)
from safeguard.moderation.orchestrator import DetectorOrchestrator, OrchestrationOutcome

logger = get_logger("moderation.service")

T = TypeVar("T")

SubmissionInput = Union[ContentSubmission, Mapping[str, Any]]


class ModerationService:
    """
    Moderates one submission per call. Safe to share across concurrent calls.

    Guarantees:
    - exactly one ModerationResult per accepted submission, or ValidationError
    - every result is audited under its review_id
    - a critical csam/underage decision runs the incident path to completion,
      even if the caller is cancelled
    """

    def __init__(
        self,
        config: ModerationConfig,
        audit_store: AuditStore,
        account_service: AccountService,
        evidence_store: EvidenceStore,
        reporting_gateway: AuthorityReportingGateway,
        alert_channel: SafetyAlertChannel,
        outbox: Optional[ReportOutbox] = None,
        csam_detector: Optional[CsamDetector] = None,
        adult_classifier: Optional[AdultContentClassifier] = None,
        text_classifiers: Sequence[TextClassifier] = (),
        age_estimator: Optional[AgeEstimator] = None,
        closeables: Iterable[Any] = (),
    ):
        self.config = config
        self.audit = AuditLogger(audit_store)
        self.intake = SubmissionIntake(config)
        self.orchestrator = DetectorOrchestrator(
            config,
            csam_detector=csam_detector,
            adult_classifier=adult_classifier,
            text_classifiers=text_classifiers,
            age_estimator=age_estimator,
            audit=self.audit,
        )
        self.incident_handler = CriticalIncidentHandler(
            config,
            account_service=account_service,
            evidence_store=evidence_store,
            reporting_gateway=reporting_gateway,
            alert_channel=alert_channel,
            audit=self.audit,
            outbox=outbox,
        )
        self._closeables = list(closeables)
        # Strong references to in-flight critical paths
        self._critical_tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        config_settings: Settings = None,
        config: ModerationConfig = None,
        session_factory: sessionmaker = None,
        transport=None,
    ) -> "ModerationService":
        """
        Wire the production service: HTTP detectors and collaborators, SQL stores.

        Args:
            config_settings: Process settings (defaults to the global settings)
            config: Moderation thresholds (defaults to get_moderation_config())
            session_factory: Session factory for the stores; built from
                ``database_url`` (and tables created) when omitted
            transport: Optional httpx transport shared by every HTTP client
        """
        from safeguard.clients.http import (
            HttpAccountService,
            HttpAuthorityReportingGateway,
            HttpSafetyAlertChannel,
        )
        from safeguard.db.connection import build_engine, get_session_factory, init_db
        from safeguard.db.repository import SqlAuditStore, SqlEvidenceStore, SqlReportOutbox
        from safeguard.detectors.http import build_http_detectors

        s = config_settings or default_settings
        config = config or get_moderation_config()

        if session_factory is None:
            engine = build_engine(s.database_url)
            init_db(engine)
            session_factory = get_session_factory(engine)

        detectors = build_http_detectors(s, transport=transport)
        account_service = HttpAccountService(
            s.account_service_url, s.service_token, s.http_timeout_seconds, transport=transport
        )
        gateway = HttpAuthorityReportingGateway(
            s.authority_gateway_url, s.service_token, s.http_timeout_seconds, transport=transport
        )
        alerts = HttpSafetyAlertChannel(
            s.safety_alert_url, s.service_token, s.http_timeout_seconds, transport=transport
        )

        return cls(
            config,
            audit_store=SqlAuditStore(session_factory),
            account_service=account_service,
            evidence_store=SqlEvidenceStore(session_factory),
            reporting_gateway=gateway,
            alert_channel=alerts,
            outbox=SqlReportOutbox(session_factory),
            csam_detector=detectors["csam_detector"],
            adult_classifier=detectors["adult_classifier"],
            text_classifiers=detectors["text_classifiers"],
            closeables=[detectors["client"], account_service, gateway, alerts],
        )

    async def moderate(self, submission: SubmissionInput) -> ModerationResult:
        """
        Moderate one submission.

        Raises:
            ValidationError: the submission was rejected at intake
        """
        try:
            ticket = self.intake.accept(submission)
        except ValidationError as e:
            logger.warning(f"Submission rejected at intake: {e} {e.errors}")
            raise

        try:
            return await self._process(ticket)
        except SystemFailure as e:
            logger.error(f"[{ticket.review_id}] Moderation failed in {e.stage}: {e.cause!r}", exc_info=e.cause)
            return await self._system_error_result(ticket, e.stage, e.cause)

    def moderate_sync(self, submission: SubmissionInput) -> ModerationResult:
        """Run moderate() to completion from synchronous code."""
        async def _once() -> ModerationResult:
            try:
                return await self.moderate(submission)
            finally:
                # HTTP clients are bound to this event loop
                await self.close()

        return asyncio.run(_once())

    async def close(self):
        """Wait for in-flight critical paths, then release the HTTP clients."""
        while self._critical_tasks:
            logger.info(f"Waiting for {len(self._critical_tasks)} critical incident task(s) before shutdown")
            await asyncio.gather(*list(self._critical_tasks), return_exceptions=True)
        for resource in self._closeables:
            await resource.close()

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _process(self, ticket: IntakeTicket) -> ModerationResult:
        review_id = ticket.review_id

        outcome = await _stage("orchestrate", lambda: self.orchestrator.run(ticket))
        violations = await _stage("aggregate", _wrap(lambda: aggregate(outcome.runs)))
        decision = await _stage("decide", _wrap(lambda: decide(violations)))

        incident: Optional[IncidentReport] = None
        if decision.rule == "critical" and any(v.is_critical_incident for v in violations):
            incident = await _stage(
                "critical_path",
                lambda: self._run_critical_path(ticket, violations, outcome, decision),
            )

        result = await _stage(
            "build_result", _wrap(lambda: self._build_result(ticket, violations, outcome, decision))
        )
        await self._record_decision(ticket, result, outcome, decision, incident)

        logger.info(
            f"[{review_id}] {result.action.value} (confidence {result.confidence:.2f}, "
            f"{len(violations)} violations, rule '{decision.rule}') "
            f"in {result.metadata.processing_time_ms:.0f}ms"
        )
        return result

    def _build_result(
        self,
        ticket: IntakeTicket,
        violations: List[ContentViolation],
        outcome: OrchestrationOutcome,
        decision: Decision,
    ) -> ModerationResult:
        return ModerationResult(
            action=decision.action,
            confidence=decision.confidence,
            violations=violations,
            requires_manual_review=decision.requires_manual_review,
            flagged_content=outcome.flagged_content,
            metadata=ResultMetadata(
                detectors_used=outcome.detectors_used,
                processing_time_ms=ticket.elapsed_ms(),
                review_id=ticket.review_id,
            ),
        )

    async def _record_decision(
        self,
        ticket: IntakeTicket,
        result: ModerationResult,
        outcome: OrchestrationOutcome,
        decision: Decision,
        incident: Optional[IncidentReport],
        caller_cancelled: bool = False,
    ) -> bool:
        extra = {
            "rule": decision.rule,
            "detector_runs": [run.to_dict() for run in outcome.runs],
        }
        if outcome.cancelled:
            extra["cancelled_detectors"] = outcome.cancelled
        if outcome.failed_detectors:
            extra["failed_detectors"] = outcome.failed_detectors
        if incident is not None:
            extra["critical_incident"] = incident.to_dict()
        if caller_cancelled:
            extra["caller_cancelled"] = True
        return await self.audit.record_decision(ticket.submission, result, extra)

    def _hold(self, task: asyncio.Future):
        self._critical_tasks.add(task)
        task.add_done_callback(self._critical_tasks.discard)

    async def _run_critical_path(
        self,
        ticket: IntakeTicket,
        violations: List[ContentViolation],
        outcome: OrchestrationOutcome,
        decision: Decision,
    ) -> IncidentReport:
        """Run the incident handler as its own task; caller cancellation does not reach it."""
        task = asyncio.ensure_future(self.incident_handler.handle(ticket, violations))
        self._hold(task)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # The caller is gone; the decision is audited once the incident path settles
            self._hold(asyncio.ensure_future(
                self._audit_abandoned_decision(task, ticket, violations, outcome, decision)
            ))
            raise

    async def _audit_abandoned_decision(
        self,
        task: asyncio.Future,
        ticket: IntakeTicket,
        violations: List[ContentViolation],
        outcome: OrchestrationOutcome,
        decision: Decision,
    ):
        await asyncio.wait([task])
        incident = None
        if not task.cancelled() and task.exception() is None:
            incident = task.result()
        result = self._build_result(ticket, violations, outcome, decision)
        await self._record_decision(ticket, result, outcome, decision, incident, caller_cancelled=True)
        logger.warning(
            f"[{ticket.review_id}] Caller cancelled; {result.action.value} decision audited "
            f"after the critical path finished"
        )

    async def _system_error_result(
        self,
        ticket: IntakeTicket,
        stage: str,
        error: BaseException,
    ) -> ModerationResult:
        await self.audit.record_system_error(ticket.review_id, stage, error)
        result = ModerationResult(
            action=ModerationAction.REVIEW,
            confidence=0.0,
            violations=[ContentViolation(
                type=ViolationType.ILLEGAL,
                severity=Severity.MEDIUM,
                confidence=0.0,
                description="System error during moderation",
                uncertain=True,
            )],
            requires_manual_review=True,
            metadata=ResultMetadata(
                processing_time_ms=ticket.elapsed_ms(),
                review_id=ticket.review_id,
            ),
        )
        await self.audit.record_decision(
            ticket.submission, result, {"rule": "system_error", "stage": stage}
        )
        return result


def _wrap(fn: Callable[[], T]) -> Callable[[], Awaitable[T]]:
    async def call() -> T:
        return fn()
    return call


async def _stage(name: str, call: Callable[[], Awaitable[T]]) -> T:
    """Run one pipeline stage, tagging unexpected errors with the stage name."""
    try:
        return await call()
    except Exception as e:
        raise SystemFailure(name, e) from e
