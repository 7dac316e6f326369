"""
Detector contracts and implementations.

External classifiers (CSAM, age, adult content, text) are injected through
the contracts in safeguard.detectors.base; safeguard.detectors.http holds the
model service clients. The pattern scanner and user-context check run
locally.
"""
from safeguard.detectors.base import (
    AdultContentClassifier,
    AgeEstimator,
    CsamDetector,
    DetectorRun,
    TextClassifier,
)

__all__ = [
    "AdultContentClassifier",
    "AgeEstimator",
    "CsamDetector",
    "DetectorRun",
    "TextClassifier",
]
