"""Feature extraction, scoring and tier evaluation."""

from fracture.analysis.feature_extractors import FeatureExtractor
from fracture.analysis.scorer import classify_trend, compute_fi, stress_deficit
from fracture.analysis.state_machine import (
    InterventionStateMachine,
    TransitionResult,
    raw_tier,
)
from fracture.analysis.window import ChannelWindows, SampleWindow

__all__ = [
    "ChannelWindows",
    "FeatureExtractor",
    "InterventionStateMachine",
    "SampleWindow",
    "TransitionResult",
    "classify_trend",
    "compute_fi",
    "raw_tier",
    "stress_deficit",
]
