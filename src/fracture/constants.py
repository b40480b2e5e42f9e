"""
Constants for Fracture Index scoring, intervention tiers and adaptive learning.

Domain presets in fracture.domains.config reference these values; change
defaults HERE rather than in the preset definitions.
"""

from pathlib import Path

# ============================================================================
# Profile Document Schema
# ============================================================================

PROFILE_SCHEMA_V1 = "fracture.profile/v1"
PROFILE_SCHEMA_V2 = "fracture.profile/v2"
PROFILE_SCHEMA_CURRENT = PROFILE_SCHEMA_V2

# ============================================================================
# Default Settings
# ============================================================================

# Database stored in user's home directory
DEFAULT_DATABASE_PATH = str(Path.home() / ".fracture" / "fracture.db")
DEFAULT_CONFIG_PATH = Path.home() / ".fracture" / "config.toml"

# Logging configuration
DEFAULT_LOG_DIR = Path.home() / ".fracture" / "logs"
DEFAULT_LOG_FILE = "fracture.log"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_LOG_BACKUP_COUNT = 5

# CLI display defaults
DEFAULT_LIST_PROFILES_LIMIT = 50


# ============================================================================
# Analysis Algorithm Constants
# ============================================================================


class FeatureConstants:
    """Constants for feature extraction (feature_extractors.py)."""

    MIN_SPECTRAL_SAMPLES = 16
    MIN_SKEWNESS_SAMPLES = 3
    MIN_AUTOCORR_SAMPLES = 3
    MIN_FRACTAL_SAMPLES = 16
    MIN_WAVELET_SAMPLES = 16

    ZERO_VARIANCE_EPSILON = 1e-12

    # Variance of log10 of a white-noise periodogram bin: (pi^2 / 6) / ln(10)^2
    LOG10_PERIODOGRAM_VARIANCE = 0.3102
    # Hann tapering correlates neighbouring bins
    HANN_VARIANCE_INFLATION = 2.0
    # Slope changes within this many noise-floor standard errors count as 0
    SLOPE_DELTA_SIGNIFICANCE = 3.0

    WAVELET_NAME = "db4"
    WAVELET_MAX_LEVEL = 4

    HIGUCHI_K_MIN = 2
    HIGUCHI_K_MAX = 10
    FRACTAL_DIMENSION_MIN = 1.0
    FRACTAL_DIMENSION_MAX = 2.0
    FRACTAL_DIMENSION_NEUTRAL = 1.5


class ScoringConstants:
    """
    Constants for composite Fracture Index scoring (scorer.py).

    Weights are defaults only; every domain supplies its own vector.
    """

    WEIGHT_SPECTRAL_SLOPE = 1.0
    WEIGHT_AUTOCORRELATION = 1.0
    WEIGHT_SKEWNESS = 0.7
    SKEW_BOOST = 1.0

    STRESS_MAX_AMPLIFICATION = 0.2

    TREND_DEAD_BAND = 0.1


class StateMachineConstants:
    """Constants for the intervention tier state machine (state_machine.py)."""

    GENTLE_THRESHOLD = 0.7
    MODERATE_THRESHOLD = 1.1
    AGGRESSIVE_THRESHOLD = 1.8

    HYSTERESIS_COUNT = 3
    CRISIS_DWELL_EVALUATIONS = 3
    RECOVERY_DWELL_EVALUATIONS = 3

    SAFETY_BAND_LOWER = 0.2
    SAFETY_BAND_UPPER = 3.0
    SAFETY_BAND_MIN_GAP = 0.05


class ProfileConstants:
    """Constants for entity profiles and pattern memory (store.py)."""

    WINDOW_CAPACITY = 64
    MIN_SAMPLES = 20
    SPECTRAL_WINDOW = 32

    PATTERN_CAPACITY = 100
    NOTABLE_FLOOR = 0.6
    BASELINE_WINDOW = 500
    RECENT_SCORES = 20

    THRESHOLD_STD_FACTOR = 0.5
    MIN_PERSONALIZATION_SAMPLES = 10

    MATCH_FI_TOLERANCE = 0.1
    MATCH_CHANNEL_RELATIVE_TOLERANCE = 0.1
    DEFAULT_RISK = 0.5

    HISTORY_CAPACITY = 200


class LearningConstants:
    """Constants for the antifragile learning loop (loop.py)."""

    FALSE_POSITIVE_PENALTY = 0.3
    ADAPTATION_RATE = 0.1
    OUTCOME_WINDOW = 20
    # Labels kept for idempotency; older events fall behind the outcome horizon
    PROCESSED_OUTCOME_CAPACITY = 500
