"""
Detector contracts and the standardized detector run record.

Each external classifier is an injected capability with a typed
request/response contract. Production implementations (HTTP) and test
doubles both satisfy these interfaces.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from safeguard.moderation.models import ContentViolation, ImageRef


# Detector names, as reported in ResultMetadata.detectors_used
CSAM_DETECTOR = "csam_detector"
AGE_ESTIMATOR = "age_estimator"
ADULT_CONTENT_CLASSIFIER = "adult_content_classifier"
HATE_SPEECH_CLASSIFIER = "hate_speech_classifier"
HARASSMENT_CLASSIFIER = "harassment_classifier"
SPAM_CLASSIFIER = "spam_classifier"
PATTERN_SCANNER = "pattern_scanner"
USER_CONTEXT_CHECK = "user_context_check"


# ===== RESPONSE CONTRACTS =====

class CsamDetection(BaseModel):
    """CSAM service response. Providers that also estimate age fill the age fields."""
    csam_confidence: float = Field(..., ge=0.0, le=1.0)
    estimated_age: Optional[float] = Field(default=None, ge=0.0)
    age_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    age_margin: Optional[float] = Field(default=None, ge=0.0)


class AgeEstimate(BaseModel):
    estimated_age: float = Field(..., ge=0.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    margin: Optional[float] = Field(default=None, ge=0.0)


class AdultContentScores(BaseModel):
    explicit_nudity: float = Field(..., ge=0.0, le=1.0)
    suggestive_nudity: float = Field(default=0.0, ge=0.0, le=1.0)
    adult_content: float = Field(default=0.0, ge=0.0, le=1.0)


class TextScore(BaseModel):
    score: float = Field(..., ge=0.0, le=1.0)


# ===== DETECTOR INTERFACES =====

class CsamDetector(ABC):
    """CSAM (and optionally age) detection over one image."""

    name: str = CSAM_DETECTOR

    @abstractmethod
    async def detect(self, image: ImageRef) -> CsamDetection:
        pass


class AgeEstimator(ABC):
    """Stand-alone age estimation, for providers that split it from CSAM detection."""

    name: str = AGE_ESTIMATOR

    @abstractmethod
    async def estimate(self, image: ImageRef) -> AgeEstimate:
        pass


class AdultContentClassifier(ABC):

    name: str = ADULT_CONTENT_CLASSIFIER

    @abstractmethod
    async def classify(self, image: ImageRef) -> AdultContentScores:
        pass


class TextClassifier(ABC):
    """
    Scores text for one category (hate_speech, harassment or spam).

    Subclasses set ``category``; the detector name is derived from it.
    """

    category: str = "text"

    @property
    def name(self) -> str:
        return f"{self.category}_classifier"

    @abstractmethod
    async def score(self, text: str) -> float:
        pass


# ===== RUN RECORD =====

@dataclass
class DetectorRun:
    """
    Standardized record of one detector invocation.

    Each concurrent detector task builds and returns its own run; the
    orchestrator merges them after every task has settled.
    """
    detector: str

    # Violations produced (synthetic fail-safe violations included)
    violations: List[ContentViolation] = field(default_factory=list)

    # Flagged element tags (e.g. "hate_speech", "phone_number")
    flagged: List[str] = field(default_factory=list)

    # Raw scores, kept for audit
    raw_outputs: Dict[str, Any] = field(default_factory=dict)

    duration_seconds: float = 0.0

    failed: bool = False
    timed_out: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for audit serialization."""
        return {
            "detector": self.detector,
            "violation_count": len(self.violations),
            "flagged": self.flagged,
            "raw_outputs": self.raw_outputs,
            "duration_seconds": round(self.duration_seconds, 4),
            "failed": self.failed,
            "timed_out": self.timed_out,
            "error": self.error,
        }
