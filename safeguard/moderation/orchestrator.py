"""
Detector orchestrator.

Dispatch order:
1. Image present: CSAM detection and age estimation run first, concurrently
   with each other, and settle before anything else is dispatched.
2. Critical csam/underage finding: the remaining external detectors are not
   dispatched (when skip_non_essential_on_critical is set).
3. Otherwise adult content (image) and the text classifiers (text) run as
   concurrent tasks; the local pattern scan runs on text.
4. The user-context risk check always runs, after the detectors settle.

Every external call is bounded by a timeout. A detector that times out or
raises never disappears: it becomes a medium-severity "uncertain" violation
that forces manual review downstream.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from safeguard.core.config import ModerationConfig
from safeguard.core.logging import get_logger
from safeguard.detectors.base import (
    ADULT_CONTENT_CLASSIFIER,
    AGE_ESTIMATOR,
    CSAM_DETECTOR,
    AdultContentClassifier,
    AdultContentScores,
    AgeEstimate,
    AgeEstimator,
    CsamDetection,
    CsamDetector,
    DetectorRun,
    TextClassifier,
)
from safeguard.detectors.context import UserContextCheck
from safeguard.detectors.patterns import PatternScanner
from safeguard.moderation.audit import AuditLogger
from safeguard.moderation.errors import DetectorFailure
from safeguard.moderation.intake import IntakeTicket
from safeguard.moderation.models import (
    ContentSubmission,
    ContentType,
    ContentViolation,
    ImageRef,
    Severity,
    ViolationEvidence,
    ViolationType,
)

logger = get_logger("moderation.orchestrator")


# Text category -> (violation type, severity, description)
TEXT_RULES: Dict[str, Tuple[ViolationType, Severity, str]] = {
    "hate_speech": (
        ViolationType.HATE_SPEECH, Severity.HIGH,
        "Hate speech detected in text content",
    ),
    "harassment": (
        ViolationType.HARASSMENT, Severity.MEDIUM,
        "Potentially harassing language detected",
    ),
    "spam": (
        ViolationType.SPAM, Severity.LOW,
        "Spam content detected",
    ),
}


@dataclass
class OrchestrationOutcome:
    """Everything the detectors produced for one submission."""
    runs: List[DetectorRun] = field(default_factory=list)
    detectors_used: Set[str] = field(default_factory=set)
    cancelled: List[str] = field(default_factory=list)
    critical_gate_hit: bool = False

    @property
    def flagged_content(self) -> List[str]:
        seen: List[str] = []
        for run in self.runs:
            for tag in run.flagged:
                if tag not in seen:
                    seen.append(tag)
        return seen

    @property
    def failed_detectors(self) -> List[str]:
        return [run.detector for run in self.runs if run.failed]


class DetectorOrchestrator:
    """Fans a submission out to the detectors and collects their runs."""

    def __init__(
        self,
        config: ModerationConfig,
        csam_detector: Optional[CsamDetector] = None,
        adult_classifier: Optional[AdultContentClassifier] = None,
        text_classifiers: Sequence[TextClassifier] = (),
        age_estimator: Optional[AgeEstimator] = None,
        audit: Optional[AuditLogger] = None,
    ):
        """
        Args:
            config: Thresholds and timeouts
            csam_detector: CSAM (and, if no age_estimator is given, age) detection
            adult_classifier: Nudity classifier for images
            text_classifiers: One classifier per text category in TEXT_RULES
            age_estimator: Optional separate age estimation service
            audit: Audit logger for detector failure records
        """
        for classifier in text_classifiers:
            if classifier.category not in TEXT_RULES:
                raise ValueError(
                    f"Unsupported text classifier category '{classifier.category}'. "
                    f"Available: {list(TEXT_RULES)}"
                )

        self.config = config
        self.csam_detector = csam_detector
        self.adult_classifier = adult_classifier
        self.text_classifiers = list(text_classifiers)
        self.age_estimator = age_estimator
        self.audit = audit
        self.pattern_scanner = PatternScanner(config)
        self.context_check = UserContextCheck(config)

    async def run(self, ticket: IntakeTicket) -> OrchestrationOutcome:
        submission = ticket.submission
        content = submission.content
        image = content.image_ref
        outcome = OrchestrationOutcome()

        # 1. Critical gate
        if image is not None:
            gate_runs = await self._run_gate(ticket, image)
            outcome.runs.extend(gate_runs)
            outcome.detectors_used.update(run.detector for run in gate_runs)
            outcome.critical_gate_hit = any(
                v.is_critical_incident for run in gate_runs for v in run.violations
            )

        # 2./3. Non-essential detectors
        calls = self._non_essential_calls(ticket, image)
        if outcome.critical_gate_hit and self.config.skip_non_essential_on_critical:
            outcome.cancelled = [name for name, _ in calls]
            if outcome.cancelled:
                logger.warning(
                    f"[{ticket.review_id}] Critical violation at gate; "
                    f"not dispatching {outcome.cancelled}"
                )
        else:
            if calls:
                runs = await asyncio.gather(*(call() for _, call in calls))
                outcome.runs.extend(runs)
                outcome.detectors_used.update(name for name, _ in calls)

            if content.has_text and self.config.pattern_scan_enabled:
                outcome.runs.append(self.pattern_scanner.scan(content.text))
                outcome.detectors_used.add(self.pattern_scanner.name)

        # 4. User context, always
        detector_violations = [v for run in outcome.runs for v in run.violations]
        outcome.runs.append(self.context_check.run(submission, detector_violations))
        outcome.detectors_used.add(self.context_check.name)

        logger.info(
            f"[{ticket.review_id}] {len(outcome.runs)} detector runs, "
            f"failed={outcome.failed_detectors}, cancelled={outcome.cancelled}"
        )
        return outcome

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def _run_gate(self, ticket: IntakeTicket, image: ImageRef) -> List[DetectorRun]:
        """CSAM detection and age estimation, concurrently, both settled on return."""
        separate_age = self.age_estimator is not None

        async def detect_csam() -> CsamDetection:
            if self.csam_detector is None:
                raise RuntimeError("no CSAM detector configured")
            return await self.csam_detector.detect(image)

        calls = [
            self._call(
                ticket,
                name=CSAM_DETECTOR,
                call=detect_csam,
                evaluate=lambda d: self._evaluate_csam(d, include_age=not separate_age),
                failure_type=ViolationType.CSAM,
            )
        ]
        if separate_age:
            calls.append(self._call(
                ticket,
                name=AGE_ESTIMATOR,
                call=lambda: self.age_estimator.estimate(image),
                evaluate=self._evaluate_age,
                failure_type=ViolationType.UNDERAGE,
            ))

        return list(await asyncio.gather(*calls))

    def _non_essential_calls(
        self,
        ticket: IntakeTicket,
        image: Optional[ImageRef],
    ) -> List[Tuple[str, Callable[[], Awaitable[DetectorRun]]]]:
        """Deferred calls, so nothing starts unless we decide to dispatch."""
        submission = ticket.submission
        calls: List[Tuple[str, Callable[[], Awaitable[DetectorRun]]]] = []

        if image is not None and self.adult_classifier is not None:
            classifier = self.adult_classifier
            calls.append((classifier.name, lambda: self._call(
                ticket,
                name=classifier.name,
                call=lambda: classifier.classify(image),
                evaluate=lambda scores: self._evaluate_adult(scores, submission),
                failure_type=ViolationType.NUDITY,
            )))

        if submission.content.has_text:
            text = submission.content.text
            for classifier in self.text_classifiers:
                calls.append((classifier.name, self._text_call(ticket, classifier, text)))

        return calls

    def _text_call(
        self,
        ticket: IntakeTicket,
        classifier: TextClassifier,
        text: str,
    ) -> Callable[[], Awaitable[DetectorRun]]:
        violation_type = TEXT_RULES[classifier.category][0]
        return lambda: self._call(
            ticket,
            name=classifier.name,
            call=lambda: classifier.score(text),
            evaluate=lambda score: self._evaluate_text(classifier, score),
            failure_type=violation_type,
        )

    async def _call(
        self,
        ticket: IntakeTicket,
        name: str,
        call: Callable[[], Awaitable[Any]],
        evaluate: Callable[[Any], DetectorRun],
        failure_type: ViolationType,
    ) -> DetectorRun:
        """Run one detector call under its timeout; convert any failure to a fail-safe run."""
        timeout = self.config.timeout_for(name)
        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(call(), timeout=timeout)
            run = evaluate(response)
        except asyncio.TimeoutError:
            failure = DetectorFailure(name, f"timed out after {timeout:.2f}s", timed_out=True)
            run = await self._fail_safe(ticket, failure, failure_type)
        except Exception as e:
            failure = DetectorFailure(name, f"{type(e).__name__}: {e}")
            run = await self._fail_safe(ticket, failure, failure_type)

        run.duration_seconds = time.perf_counter() - start
        return run

    async def _fail_safe(
        self,
        ticket: IntakeTicket,
        failure: DetectorFailure,
        failure_type: ViolationType,
    ) -> DetectorRun:
        logger.warning(f"[{ticket.review_id}] {failure}")
        if self.audit is not None:
            await self.audit.record_detector_failure(
                ticket.review_id, failure.detector, failure.reason, failure.timed_out
            )
        return DetectorRun(
            detector=failure.detector,
            violations=[ContentViolation(
                type=failure_type,
                severity=Severity.MEDIUM,
                confidence=0.0,
                description=(
                    f"{failure.detector} unavailable ({failure.reason}); "
                    "result uncertain, manual review required"
                ),
                detector=failure.detector,
                uncertain=True,
            )],
            failed=True,
            timed_out=failure.timed_out,
            error=failure.reason,
        )

    # =========================================================================
    # Score -> violation rules
    # =========================================================================

    def _evaluate_csam(self, detection: CsamDetection, include_age: bool) -> DetectorRun:
        violations: List[ContentViolation] = []

        if detection.csam_confidence > self.config.csam_confidence_floor:
            violations.append(ContentViolation(
                type=ViolationType.CSAM,
                severity=Severity.CRITICAL,
                confidence=detection.csam_confidence,
                description="Potential child sexual abuse material detected",
                requires_law_enforcement=True,
                detector=CSAM_DETECTOR,
                evidence=ViolationEvidence(
                    location="image_content",
                    context="Automated CSAM detection system flagged this content",
                ),
            ))

        if (
            include_age
            and detection.estimated_age is not None
            and detection.age_confidence is not None
        ):
            estimate = AgeEstimate(
                estimated_age=detection.estimated_age,
                confidence=detection.age_confidence,
                margin=detection.age_margin,
            )
            violations.extend(self._underage_violations(estimate, CSAM_DETECTOR))

        return DetectorRun(
            detector=CSAM_DETECTOR,
            violations=violations,
            raw_outputs=detection.model_dump(),
        )

    def _evaluate_age(self, estimate: AgeEstimate) -> DetectorRun:
        return DetectorRun(
            detector=AGE_ESTIMATOR,
            violations=self._underage_violations(estimate, AGE_ESTIMATOR),
            raw_outputs=estimate.model_dump(),
        )

    def _underage_violations(self, estimate: AgeEstimate, detector: str) -> List[ContentViolation]:
        if not (
            estimate.estimated_age < self.config.underage_age_threshold
            and estimate.confidence > self.config.underage_confidence_floor
        ):
            return []

        margin = f" ± {estimate.margin:g}" if estimate.margin is not None else ""
        return [ContentViolation(
            type=ViolationType.UNDERAGE,
            severity=Severity.CRITICAL,
            confidence=estimate.confidence,
            description=f"Detected person appears to be {estimate.estimated_age:g} years old",
            requires_law_enforcement=estimate.estimated_age < self.config.mandatory_report_age,
            detector=detector,
            evidence=ViolationEvidence(
                location="image_content",
                context=f"Age estimation: {estimate.estimated_age:g}{margin}",
            ),
        )]

    def _evaluate_adult(
        self,
        scores: AdultContentScores,
        submission: ContentSubmission,
    ) -> DetectorRun:
        thresholds = self.config.nudity
        violations: List[ContentViolation] = []
        flagged: List[str] = []

        if submission.type == ContentType.PRIVATE_PHOTO:
            # Private albums are more permissive but still moderated
            if scores.explicit_nudity > thresholds.private_photo:
                violations.append(ContentViolation(
                    type=ViolationType.NUDITY,
                    severity=Severity.LOW,
                    confidence=scores.explicit_nudity,
                    description="Potentially inappropriate content in private album",
                    detector=ADULT_CONTENT_CLASSIFIER,
                ))
        else:
            threshold = (
                thresholds.profile_photo
                if submission.type == ContentType.PROFILE_PHOTO
                else thresholds.other
            )
            if scores.explicit_nudity > threshold:
                violations.append(ContentViolation(
                    type=ViolationType.NUDITY,
                    severity=Severity.MEDIUM,
                    confidence=scores.explicit_nudity,
                    description="Explicit nudity not allowed in public profile content",
                    detector=ADULT_CONTENT_CLASSIFIER,
                    evidence=ViolationEvidence(
                        location="image_content",
                        context=f"explicit_nudity={scores.explicit_nudity:.2f} > {threshold:.2f}",
                    ),
                ))
                flagged.append("explicit_nudity")

        return DetectorRun(
            detector=ADULT_CONTENT_CLASSIFIER,
            violations=violations,
            flagged=flagged,
            raw_outputs=scores.model_dump(),
        )

    def _evaluate_text(self, classifier: TextClassifier, score: float) -> DetectorRun:
        if not 0.0 <= score <= 1.0:
            raise ValueError(f"score {score!r} outside [0, 1]")

        violation_type, severity, description = TEXT_RULES[classifier.category]
        threshold = getattr(self.config.text, classifier.category)
        violations: List[ContentViolation] = []
        flagged: List[str] = []

        if score > threshold:
            violations.append(ContentViolation(
                type=violation_type,
                severity=severity,
                confidence=score,
                description=description,
                detector=classifier.name,
                evidence=ViolationEvidence(
                    location="text",
                    context=f"{classifier.category} score {score:.2f} > {threshold:.2f}",
                ),
            ))
            flagged.append(classifier.category)

        return DetectorRun(
            detector=classifier.name,
            violations=violations,
            flagged=flagged,
            raw_outputs={"score": score},
        )
