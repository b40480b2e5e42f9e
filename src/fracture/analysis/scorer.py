"""
Composite Fracture Index scoring.

FI = w_slope * max(0, -delta_slope) + w_ac * autocorrelation
     + w_skew * skew_boost * |skew|
     + w_wavelet * wavelet_energy + w_fractal * |D - 1.5|

optionally amplified by up to 20% from a low stress signal, then clamped to
be non-negative.
"""

import logging
import math

from fracture.constants import FeatureConstants as FC
from fracture.constants import ScoringConstants as SC
from fracture.domains.types import ScoringWeights
from fracture.models.features import FeatureSet, FractureScore
from fracture.models.profile import ChannelBaseline
from fracture.types import Trend

logger = logging.getLogger(__name__)

__all__ = [
    "compute_fi",
    "stress_deficit",
    "classify_trend",
]


def compute_fi(
    features: FeatureSet,
    weights: ScoringWeights,
    stress: float | None = None,
    *,
    min_samples: int | None = None,
    required_channels: int | None = None,
) -> FractureScore:
    """
    Combine extractor outputs into a Fracture Index.

    Args:
        features: Extractor outputs for one evaluation
        weights: Domain weight vector
        stress: Normalized stress deficit in [0, 1] (how far the stress
            channel sits below its personalized baseline), or None when no
            stress signal is present
        min_samples: Minimum samples the backing window must hold; below it
            the score is 0 and flagged insufficient
        required_channels: Channels the domain expects, for confidence

    Returns:
        FractureScore with tier/trend left at defaults for the state machine
        to fill in

    Example:
        >>> score = compute_fi(features, get_domain("cognitive").weights)
        >>> score.fi
        1.42
    """
    below_minimum = min_samples is not None and features.sample_count < min_samples
    if features.insufficient_data or below_minimum:
        return FractureScore(
            fi=0.0, features=features, insufficient_data=True, confidence=0.0
        )

    slope_term = max(0.0, -(features.spectral_slope_delta or 0.0))
    ac_term = features.autocorrelation or 0.0
    skew_term = abs(features.skewness or 0.0) * weights.skew_boost

    fi = (
        weights.spectral_slope * slope_term
        + weights.autocorrelation * ac_term
        + weights.skewness * skew_term
    )

    if weights.wavelet > 0 and features.wavelet_energy is not None:
        fi += weights.wavelet * features.wavelet_energy
    if weights.fractal > 0 and features.fractal_dimension is not None:
        fi += weights.fractal * abs(
            features.fractal_dimension - FC.FRACTAL_DIMENSION_NEUTRAL
        )

    multiplier = 1.0
    if stress is not None and math.isfinite(stress):
        multiplier = 1.0 + SC.STRESS_MAX_AMPLIFICATION * min(max(stress, 0.0), 1.0)
        fi *= multiplier

    if not math.isfinite(fi):
        logger.warning(f"Non-finite FI from features {features}; clamping to 0")
        fi = 0.0

    confidence = 1.0
    if required_channels:
        confidence = min(1.0, len(features.active_channels) / required_channels)

    return FractureScore(
        fi=max(0.0, fi),
        features=features,
        confidence=confidence,
        stress_multiplier=multiplier,
    )


def stress_deficit(
    value: float, baseline: ChannelBaseline, min_count: int
) -> float | None:
    """
    Normalized shortfall of a stress reading below its personalized baseline.

    Args:
        value: Current stress-channel reading (e.g., heart-rate variability)
        baseline: The entity's baseline for that channel
        min_count: Baseline samples required before the signal is trusted

    Returns:
        0.0 at or above the baseline mean, rising to 1.0 at zero; None until
        the baseline holds ``min_count`` samples
    """
    if baseline.count < min_count or baseline.mean <= 0:
        return None
    if value >= baseline.mean:
        return 0.0
    return min(1.0, (baseline.mean - value) / baseline.mean)


def classify_trend(current: float, previous: float | None) -> Trend:
    """
    Trend tag from comparing a score with the previous one.

    Args:
        current: Current FI
        previous: Previous FI, or None for the first score

    Returns:
        WORSENING if FI rose by more than the dead band, IMPROVING if it fell
        by more than the dead band, otherwise STABLE
    """
    if previous is None:
        return Trend.STABLE
    diff = current - previous
    if diff > SC.TREND_DEAD_BAND:
        return Trend.WORSENING
    if diff < -SC.TREND_DEAD_BAND:
        return Trend.IMPROVING
    return Trend.STABLE
